"""
Guest fibers.

A fiber wraps a callable. When the callable returns a generator, that
generator is the fiber's resumable stack:

    value = yield                      # suspend, resumer gets control back
    value = yield Transfer(other, x)   # suspend, hand control to *other*

Returning finishes the fiber, raising aborts it. A callable that does not
return a generator simply runs to completion on its first resume.

Fibers never drive each other directly; ``VM.resume_fiber`` steps them and
follows ``Transfer`` requests in a trampoline.
"""

import inspect
import itertools
from enum import Enum
from typing import Any, Callable, Optional

_fiber_ids = itertools.count(1)


class FiberState(Enum):
    """Lifecycle of a fiber"""
    NEW = "new"
    RUNNING = "running"
    SUSPENDED = "suspended"
    DONE = "done"
    ABORTED = "aborted"


class Transfer:
    """Yielded by a fiber to pass control (and optionally a value) to another fiber"""

    __slots__ = ("fiber", "value")

    def __init__(self, fiber: "Fiber", value: Any = None):
        self.fiber = fiber
        self.value = value

    def __repr__(self) -> str:
        return f"Transfer({self.fiber!r})"


class Fiber:
    """Resumable guest execution context"""

    def __init__(self, fn: Callable[..., Any], args: tuple = (), name: Optional[str] = None):
        self.id = next(_fiber_ids)
        self.name = name or getattr(fn, "__name__", "fiber")
        self._fn = fn
        self._args = args
        self._generator = None
        self.state = FiberState.NEW
        self.result: Any = None
        self.error: Optional[str] = None

    @property
    def is_done(self) -> bool:
        return self.state in (FiberState.DONE, FiberState.ABORTED)

    @property
    def is_resumable(self) -> bool:
        return self.state in (FiberState.NEW, FiberState.SUSPENDED)

    def step(self, value: Any = None, error: Optional[BaseException] = None) -> Any:
        """Run the fiber until it next yields.

        Returns whatever the fiber yielded (a ``Transfer`` or a plain
        suspension value), or ``None`` once it finished. Exceptions escaping
        the fiber mark it aborted and propagate to the caller.
        """
        self.state = FiberState.RUNNING
        try:
            if self._generator is None:
                if error is not None:
                    raise error
                outcome = self._fn(*self._args)
                if not inspect.isgenerator(outcome):
                    self.result = outcome
                    self.state = FiberState.DONE
                    return None
                self._generator = outcome
                request = outcome.send(None)
            elif error is not None:
                request = self._generator.throw(error)
            else:
                request = self._generator.send(value)
        except StopIteration as stop:
            self.result = stop.value
            self.state = FiberState.DONE
            self._generator = None
            return None
        except BaseException as exc:
            self.state = FiberState.ABORTED
            self.error = str(exc) or type(exc).__name__
            self._generator = None
            raise
        self.state = FiberState.SUSPENDED
        return request

    def __repr__(self) -> str:
        return f"<Fiber #{self.id} {self.name} {self.state.value}>"
