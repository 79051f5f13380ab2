"""
Loom - fiber scheduling for an embedded guest VM on top of asyncio.

Guest fibers start asynchronous operations through foreign methods; the
scheduler drives them concurrently on one thread and resumes each fiber
as its operation completes.
"""

__version__ = "0.1.0"

from .config import LoomConfig, parse_file_flags
from .errors import (
    FiberAbort,
    GuestError,
    GuestLookupError,
    GuestRuntimeError,
    HandleReleasedError,
    IncorrectArgumentCount,
    InitializationError,
    LoomError,
    SchedulerError,
    ScriptLoadError,
    ThreadAffinityError,
)
from .fiber import Fiber, FiberState, Transfer
from .handle import CallHandle, Handle
from .scheduler import CompletionTask, Scheduler, SchedulerState, TaskQueue
from .vm import VM, GuestClass, ModuleScope

__all__ = [
    '__version__',
    # Runtime
    'VM', 'GuestClass', 'ModuleScope', 'Fiber', 'FiberState', 'Transfer',
    'Handle', 'CallHandle',
    # Scheduler
    'Scheduler', 'SchedulerState', 'CompletionTask', 'TaskQueue',
    # Config
    'LoomConfig', 'parse_file_flags',
    # Errors
    'LoomError', 'InitializationError', 'SchedulerError', 'HandleReleasedError',
    'ThreadAffinityError', 'ScriptLoadError', 'GuestError', 'FiberAbort', 'IncorrectArgumentCount',
    'GuestLookupError', 'GuestRuntimeError',
]
