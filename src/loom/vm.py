"""
Loom guest VM.

A small single-threaded VM hosting guest modules and fibers. Guest code is
ordinary Python: module sources define ``GuestClass`` objects whose methods
are looked up by signature (``sleep(_)``, ``hasNext``, ``resume_(_,_)``),
and fibers are generators stepped by the VM.

The VM is pinned to the thread that created it. Every entry point checks
the caller's thread, so asynchronous work can only reach the VM after it
has been funnelled back onto that thread.
"""

import functools
import inspect
import logging
import sys
import threading
from typing import Any, Callable, Dict, List, Optional, Set

from .config import LoomConfig
from .errors import (
    FiberAbort,
    GuestError,
    GuestLookupError,
    GuestRuntimeError,
    HandleReleasedError,
    IncorrectArgumentCount,
    LoomError,
    ThreadAffinityError,
)
from .fiber import Fiber, FiberState, Transfer
from .handle import CallHandle, Handle, make_signature, parse_signature, unwrap
from .modules import ModuleRegistry, default_registry

logger = logging.getLogger("loom.vm")


class GuestClass:
    """
    A guest class: a named set of methods keyed by signature.

    Attribute access dispatches on name and argument count, so script code
    can write ``Timer.sleep(10)`` for ``sleep(_)`` or ``Scheduler.hasNext()``
    for the getter ``hasNext``.
    """

    def __init__(self, class_name: str, module_name: str):
        self.class_name = class_name
        self.module_name = module_name
        self._methods: Dict[str, Callable[..., Any]] = {}

    def define(self, signature: str, fn: Callable[..., Any]) -> Callable[..., Any]:
        parse_signature(signature)
        self._methods[signature] = fn
        return fn

    def method(self, signature: str):
        """Decorator form of :meth:`define`."""
        def decorator(fn):
            return self.define(signature, fn)
        return decorator

    def lookup(self, signature: str) -> Optional[Callable[..., Any]]:
        return self._methods.get(signature)

    def signatures(self) -> List[str]:
        return sorted(self._methods)

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)

        def invoke(*args):
            signature = make_signature(name, len(args))
            fn = self._methods.get(signature)
            if fn is None and not args:
                fn = self._methods.get(name)
            if fn is None:
                raise GuestLookupError(
                    f"{self.class_name} does not implement '{signature}'."
                )
            return fn(*args)

        invoke.__name__ = name
        return invoke

    def __repr__(self) -> str:
        return f"<GuestClass {self.module_name}.{self.class_name}>"


class ModuleScope:
    """Top-level variables of a loaded guest module"""

    def __init__(self, vm: "VM", name: str):
        self.vm = vm
        self.name = name
        self.variables: Dict[str, Any] = {}

    def define_class(self, class_name: str) -> GuestClass:
        guest_class = GuestClass(class_name, self.name)
        self.variables[class_name] = guest_class
        return guest_class

    def foreign(self, guest_class: GuestClass, signature: str) -> None:
        """Declare *signature* on *guest_class* as a foreign (host) method."""
        fn = self.vm.bind_foreign_method(self.name, guest_class.class_name, signature)
        guest_class.define(signature, fn)

    def __repr__(self) -> str:
        return f"<ModuleScope {self.name} {sorted(self.variables)}>"


def _is_host_error(exc: BaseException) -> bool:
    return isinstance(exc, LoomError) and not isinstance(exc, GuestError)


class VM:
    """Single-threaded guest VM owning fibers, modules and handles"""

    def __init__(
        self,
        registry: Optional[ModuleRegistry] = None,
        config: Optional[LoomConfig] = None,
        write: Optional[Callable[[str], Any]] = None,
        on_error: Optional[Callable[[Fiber, str], Any]] = None,
        arguments: Optional[List[str]] = None,
    ):
        self.registry = registry or default_registry()
        self.config = config or LoomConfig()
        self.arguments: List[str] = list(arguments or [])
        self.scheduler = None
        self._write = write
        self._on_error = on_error
        self._owner = threading.get_ident()
        self._modules: Dict[str, ModuleScope] = {}
        self._handles: Set[Handle] = set()
        self._fiber_stack: List[Fiber] = []
        self._freed = False

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _check(self) -> None:
        if self._freed:
            raise HandleReleasedError("VM has been freed")
        if threading.get_ident() != self._owner:
            raise ThreadAffinityError(
                "VM accessed from a thread other than the one that created it"
            )

    @property
    def is_freed(self) -> bool:
        return self._freed

    # ------------------------------------------------------------------
    # Fibers
    # ------------------------------------------------------------------

    @property
    def current_fiber(self) -> Optional[Fiber]:
        return self._fiber_stack[-1] if self._fiber_stack else None

    def new_fiber(self, fn: Callable[..., Any], *args, name: Optional[str] = None) -> Fiber:
        self._check()
        return Fiber(fn, args, name=name)

    def interpret(self, module_name: str, main: Callable[["VM"], Any]) -> Fiber:
        """Run ``main(vm)`` as the root fiber of *module_name*.

        Returns once the root fiber finished or suspended; pending
        asynchronous work is left for the scheduler's drive loop.
        """
        self._check()
        fiber = Fiber(main, (self,), name=module_name)
        logger.debug("Interpreting %s", module_name)
        self._run(fiber, None, None)
        return fiber

    def resume_fiber(self, fiber: Any, value: Any = None) -> None:
        """Transfer control into a suspended fiber, optionally with a value.

        Raises:
            GuestRuntimeError: if the fiber (or one it transferred to)
                aborts, or cannot be resumed.
        """
        self._run(unwrap(fiber), value, None)

    def resume_fiber_error(self, fiber: Any, message: str) -> None:
        """Resume a fiber by raising ``GuestError(message)`` inside it."""
        self._run(unwrap(fiber), None, GuestError(message))

    def _run(self, fiber: Any, value: Any, error: Optional[BaseException]) -> None:
        self._check()
        target = fiber
        while target is not None:
            self._ensure_resumable(target)
            self._fiber_stack.append(target)
            try:
                request = target.step(value, error)
            except Exception as exc:
                if _is_host_error(exc):
                    raise
                if not isinstance(exc, GuestRuntimeError):
                    self._report(target)
                raise GuestRuntimeError(target.error, fiber=target) from exc
            finally:
                self._fiber_stack.pop()
            value = error = None
            if isinstance(request, Transfer):
                target, value = unwrap(request.fiber), request.value
            else:
                target = None

    def _ensure_resumable(self, fiber: Any) -> None:
        if not isinstance(fiber, Fiber):
            raise GuestRuntimeError(f"{fiber!r} is not a fiber.")
        if fiber.state is FiberState.RUNNING:
            raise GuestRuntimeError("Fiber has already been called.", fiber=fiber)
        if fiber.is_done:
            raise GuestRuntimeError("Cannot resume a finished fiber.", fiber=fiber)

    def _report(self, fiber: Fiber) -> None:
        if self._on_error is not None:
            self._on_error(fiber, fiber.error)
        else:
            logger.error("Runtime error in %r: %s", fiber, fiber.error)

    def abort_fiber(self, message: str) -> None:
        """Abort the running fiber from inside a foreign method."""
        raise FiberAbort(message)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def call(self, subject: Any, method: CallHandle, *args) -> Any:
        """Invoke a resolved method on *subject* and return its result.

        A method that returns a generator is run in a fresh fiber, the way
        a host call enters the guest.
        """
        self._check()
        fn = self._resolve(unwrap(subject), method)
        if len(args) != method.arity:
            raise IncorrectArgumentCount(method.signature, method.arity, len(args))
        args = tuple(unwrap(arg) for arg in args)
        try:
            result = fn(*args)
        except Exception as exc:
            if _is_host_error(exc) or isinstance(exc, GuestRuntimeError):
                raise
            raise GuestRuntimeError(str(exc) or type(exc).__name__) from exc
        if inspect.isgenerator(result):
            fiber = Fiber(lambda: result, name=method.signature)
            self._run(fiber, None, None)
            return fiber.result
        return result

    def has_method(self, subject: Any, method: CallHandle) -> bool:
        target = unwrap(subject)
        return isinstance(target, GuestClass) and target.lookup(method.signature) is not None

    def _resolve(self, target: Any, method: CallHandle) -> Callable[..., Any]:
        if not isinstance(method, CallHandle):
            raise TypeError(f"Expected a CallHandle, got {type(method).__name__}")
        method.value  # raises if released
        if not isinstance(target, GuestClass):
            raise GuestRuntimeError(f"{target!r} does not implement '{method.signature}'.")
        fn = target.lookup(method.signature)
        if fn is None:
            raise GuestRuntimeError(
                f"{target.class_name} does not implement '{method.signature}'."
            )
        return fn

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def make_handle(self, value: Any) -> Handle:
        self._check()
        handle = Handle(self, value)
        self._handles.add(handle)
        return handle

    def make_call_handle(self, signature: str) -> CallHandle:
        self._check()
        handle = CallHandle(self, signature)
        self._handles.add(handle)
        return handle

    def _forget_handle(self, handle: Handle) -> None:
        self._handles.discard(handle)

    @property
    def handle_count(self) -> int:
        return len(self._handles)

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def import_module(self, name: str) -> ModuleScope:
        """Load a registered module (once) and return its scope."""
        self._check()
        scope = self._modules.get(name)
        if scope is not None:
            return scope
        module = self.registry.get_module(name)
        if module is None:
            raise GuestLookupError(f"Could not load module '{name}'.")
        scope = ModuleScope(self, name)
        # Registered before the source runs so modules can import each other
        self._modules[name] = scope
        logger.debug("Loading module %s", name)
        module.source(self, scope)
        return scope

    def import_variable(self, module: str, name: str) -> Any:
        scope = self.import_module(module)
        if name not in scope.variables:
            raise GuestLookupError(
                f"Could not find a variable named '{name}' in module '{module}'."
            )
        return scope.variables[name]

    def get_variable(self, module: str, name: str) -> Handle:
        """Return a handle to a variable of an already loaded module."""
        self._check()
        scope = self._modules.get(module)
        if scope is None:
            raise GuestLookupError(f"Module '{module}' is not loaded.")
        if name not in scope.variables:
            raise GuestLookupError(
                f"Could not find a variable named '{name}' in module '{module}'."
            )
        return self.make_handle(scope.variables[name])

    @property
    def loaded_modules(self) -> List[str]:
        return sorted(self._modules)

    def bind_foreign_method(self, module: str, class_name: str, signature: str) -> Callable[..., Any]:
        fn = self.registry.bind_foreign_method(module, class_name, signature)
        if fn is None:
            raise GuestLookupError(
                f"Could not find foreign method '{signature}' for class "
                f"{class_name} in module '{module}'."
            )
        return functools.partial(fn, self)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def write(self, text: str) -> None:
        if self._write is not None:
            self._write(text)
        else:
            sys.stdout.write(text)

    def flush(self) -> None:
        if self._write is None:
            sys.stdout.flush()

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def free(self) -> None:
        """Release the scheduler state and every outstanding handle."""
        if self._freed:
            return
        if self.scheduler is not None:
            self.scheduler.close()
            self.scheduler = None
        for handle in list(self._handles):
            handle.release()
        self._modules.clear()
        self._freed = True
        logger.debug("VM freed")

    def __repr__(self) -> str:
        state = "freed" if self._freed else f"modules={self.loaded_modules}"
        return f"<VM {state}>"
