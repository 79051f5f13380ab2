"""
Handles to guest objects.

A handle keeps a guest value reachable from host code (a fiber captured by
a pending continuation, the Scheduler class, ...). It is only valid while
its VM is alive: ``VM.free`` releases every outstanding handle.
"""

from typing import Any

from .errors import HandleReleasedError


class Handle:
    """Opaque, releasable reference to a guest value"""

    __slots__ = ("_vm", "_value", "_released")

    def __init__(self, vm, value: Any):
        self._vm = vm
        self._value = value
        self._released = False

    @property
    def value(self) -> Any:
        if self._released:
            raise HandleReleasedError("Handle used after it was released")
        return self._value

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Release the handle. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self._value = None
        if self._vm is not None:
            self._vm._forget_handle(self)
            self._vm = None

    def __repr__(self) -> str:
        if self._released:
            return "<Handle released>"
        return f"<Handle {self._value!r}>"


def parse_signature(signature: str) -> tuple:
    """Split a method signature into ``(name, arity)``.

    ``name`` is a getter (arity 0), ``name()`` a zero-argument method and
    ``name(_,_)`` a two-argument method.
    """
    if "(" not in signature:
        return signature, 0
    if not signature.endswith(")"):
        raise ValueError(f"Malformed signature '{signature}'")
    name, params = signature[:-1].split("(", 1)
    if not name:
        raise ValueError(f"Malformed signature '{signature}'")
    params = params.strip()
    if not params:
        return name, 0
    slots = params.split(",")
    if any(slot.strip() != "_" for slot in slots):
        raise ValueError(f"Malformed signature '{signature}'")
    return name, len(slots)


def make_signature(name: str, arity: int) -> str:
    return f"{name}({','.join('_' * arity)})"


class CallHandle(Handle):
    """Handle to a method signature, resolved once and reused for calls"""

    __slots__ = ("signature", "arity")

    def __init__(self, vm, signature: str):
        name, arity = parse_signature(signature)
        super().__init__(vm, name)
        self.signature = signature
        self.arity = arity

    def __repr__(self) -> str:
        state = " released" if self.released else ""
        return f"<CallHandle {self.signature}{state}>"


def unwrap(value: Any) -> Any:
    """Return the guest value behind *value* if it is a handle."""
    if isinstance(value, Handle):
        return value.value
    return value
