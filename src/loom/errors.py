"""
Error types for the Loom runtime.

Host-level errors (initialisation, misuse of the scheduler, thread affinity,
released handles) derive directly from ``LoomError`` and are never turned
into guest errors. Everything raised inside script code is a ``GuestError``;
when a fiber dies because of one, the VM reports it as a
``GuestRuntimeError``.
"""

from typing import Any, Optional


class LoomError(Exception):
    """Base class for all Loom errors"""
    pass


class InitializationError(LoomError):
    """Required guest class or method could not be resolved"""
    pass


class SchedulerError(LoomError):
    """Scheduler used in a way that breaks its run-once guarantees"""
    pass


class HandleReleasedError(LoomError):
    """Handle used after release or after its VM was freed"""
    pass


class ThreadAffinityError(LoomError):
    """VM touched from a thread other than the one that created it"""
    pass


class ScriptLoadError(LoomError):
    """Guest script could not be read or has no ``main``"""
    pass


class GuestError(LoomError):
    """Error raised inside guest (script) code"""
    pass


class FiberAbort(GuestError):
    """Raised by ``VM.abort_fiber`` when a foreign method fails"""
    pass


class IncorrectArgumentCount(GuestError):
    """Call handle invoked with the wrong number of arguments"""

    def __init__(self, signature: str, expected: int, given: int):
        self.signature = signature
        self.expected = expected
        self.given = given
        super().__init__(
            f"'{signature}' expects {expected} argument(s), got {given}"
        )


class GuestLookupError(GuestError):
    """Module, variable or method not found in the guest"""
    pass


class GuestRuntimeError(GuestError):
    """A fiber aborted with an error while being resumed or called"""

    def __init__(self, message: str, fiber: Optional[Any] = None):
        self.message = message
        self.fiber = fiber
        super().__init__(message)
