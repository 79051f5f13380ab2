"""
Loom Scheduler

Bridges guest fibers and asyncio. Foreign methods queue *completion tasks*
(an awaitable plus a continuation that resumes the fiber which started
it); once the guest has run out of synchronous work the drive loop spawns
every queued operation on a single-threaded event loop and runs each
continuation as its operation completes, in arrival order.

Usage:
    scheduler = Scheduler.attach(vm)          # once the guest side is loaded
    scheduler.schedule(asyncio.sleep(0.1), scheduler.resume(fiber))
    scheduler.run_to_completion()
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from . import event_loop
from .errors import GuestLookupError, InitializationError, SchedulerError
from .handle import CallHandle, Handle

logger = logging.getLogger("loom.scheduler")

Continuation = Callable[[Any], None]

SCHEDULER_MODULE = "scheduler"
SCHEDULER_CLASS = "Scheduler"


class CompletionTask:
    """
    An asynchronous operation paired with the continuation that resumes
    the fiber which started it.

    The operation is spawned at most once and the continuation runs at most
    once, after the operation completed.
    """

    __slots__ = ("label", "_operation", "_continuation")

    def __init__(self, operation: Awaitable[Any], continuation: Continuation,
                 label: Optional[str] = None):
        self.label = label or getattr(operation, "__qualname__", type(operation).__name__)
        self._operation = operation
        self._continuation = continuation

    @property
    def spawned(self) -> bool:
        return self._operation is None

    @property
    def completed(self) -> bool:
        return self._continuation is None

    def spawn(self) -> asyncio.Future:
        """Start the operation on the running loop."""
        operation, self._operation = self._operation, None
        if operation is None:
            raise SchedulerError(f"Task '{self.label}' was already spawned")
        return asyncio.ensure_future(operation)

    def complete(self, vm) -> None:
        """Run the continuation against *vm*."""
        continuation, self._continuation = self._continuation, None
        if continuation is None:
            raise SchedulerError(f"Task '{self.label}' was already completed")
        continuation(vm)

    def close(self) -> None:
        """Drop a task that will never run."""
        operation, self._operation = self._operation, None
        self._continuation = None
        if asyncio.iscoroutine(operation):
            operation.close()

    def __repr__(self) -> str:
        state = "completed" if self.completed else "spawned" if self.spawned else "queued"
        return f"<CompletionTask {self.label} {state}>"


class TaskQueue:
    """Append-only buffer of newly scheduled tasks, emptied by each drain"""

    def __init__(self):
        self._tasks: List[CompletionTask] = []

    def push(self, task: CompletionTask) -> None:
        self._tasks.append(task)

    def drain(self) -> List[CompletionTask]:
        tasks, self._tasks = self._tasks, []
        return tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __bool__(self) -> bool:
        return bool(self._tasks)


@dataclass
class SchedulerState:
    """Guest handles resolved once at initialisation, plus mutable scheduler state"""

    class_handle: Handle
    resume_waiting: CallHandle
    has_next: CallHandle
    run_next_scheduled: CallHandle
    resume: CallHandle
    resume_with: CallHandle
    resume_error: CallHandle
    awaiting_all: bool = False
    queue: TaskQueue = field(default_factory=TaskQueue)

    SIGNATURES = {
        "resume_waiting": "resumeWaitingFibers_()",
        "has_next": "hasNext",
        "run_next_scheduled": "runNextScheduled_()",
        "resume": "resume_(_)",
        "resume_with": "resume_(_,_)",
        "resume_error": "resumeError_(_,_)",
    }

    @classmethod
    def capture(cls, vm) -> "SchedulerState":
        """Resolve the guest Scheduler class and its methods.

        Raises:
            InitializationError: if the class or any method is missing.
        """
        try:
            class_handle = vm.get_variable(SCHEDULER_MODULE, SCHEDULER_CLASS)
        except GuestLookupError as exc:
            raise InitializationError(f"Scheduler class not found: {exc}") from exc

        handles: Dict[str, CallHandle] = {}
        for attr, signature in cls.SIGNATURES.items():
            handle = vm.make_call_handle(signature)
            if not vm.has_method(class_handle, handle):
                for made in list(handles.values()) + [handle, class_handle]:
                    made.release()
                raise InitializationError(
                    f"{SCHEDULER_CLASS} does not implement '{signature}'"
                )
            handles[attr] = handle
        return cls(class_handle=class_handle, **handles)

    def release(self) -> None:
        for handle in (self.class_handle, self.resume_waiting, self.has_next,
                       self.run_next_scheduled, self.resume, self.resume_with,
                       self.resume_error):
            handle.release()


class Scheduler:
    """
    Host half of the guest scheduler.

    Owns the task queue and the await-all flag for one VM and runs the
    drive loop that hands completions back to the guest.
    """

    def __init__(self, vm, state: SchedulerState):
        self.vm = vm
        self.state = state
        self._closed = False
        self._scheduled_count = 0
        self._completed_count = 0
        self._pass_count = 0
        self._in_flight = 0

    @classmethod
    def attach(cls, vm) -> "Scheduler":
        """Return the VM's scheduler, creating it on first use."""
        if vm.scheduler is None:
            vm.scheduler = cls(vm, SchedulerState.capture(vm))
            logger.debug("Scheduler attached to %r", vm)
        return vm.scheduler

    # ------------------------------------------------------------------
    # Called from foreign methods
    # ------------------------------------------------------------------

    def schedule(self, operation: Awaitable[Any], continuation: Continuation,
                 label: Optional[str] = None) -> CompletionTask:
        """Queue *operation*; *continuation* runs once it completes."""
        if self._closed:
            if asyncio.iscoroutine(operation):
                operation.close()
            raise SchedulerError("Scheduler is closed")
        if not inspect.isawaitable(operation):
            raise SchedulerError(f"Cannot schedule {operation!r}: not awaitable")
        task = CompletionTask(operation, continuation, label)
        self.state.queue.push(task)
        self._scheduled_count += 1
        logger.debug("Scheduled %s", task.label)
        return task

    def request_await_all(self) -> None:
        """Record that a fiber waits for every task queued so far."""
        self.state.awaiting_all = True

    # Continuations ------------------------------------------------------

    def resume(self, fiber: Any) -> Continuation:
        """Continuation resuming *fiber* with no value."""
        return self._resume_continuation(self.state.resume, fiber)

    def resume_with(self, fiber: Any, value: Any) -> Continuation:
        """Continuation resuming *fiber* with *value*."""
        return self._resume_continuation(self.state.resume_with, fiber, value)

    def resume_error(self, fiber: Any, message: str) -> Continuation:
        """Continuation resuming *fiber* by raising *message* inside it."""
        return self._resume_continuation(self.state.resume_error, fiber, message)

    def _resume_continuation(self, method: CallHandle, fiber: Any, *args) -> Continuation:
        fiber_handle = self.vm.make_handle(fiber)
        class_handle = self.state.class_handle

        def continuation(vm) -> None:
            try:
                vm.call(class_handle, method, fiber_handle, *args)
            finally:
                fiber_handle.release()

        return continuation

    # ------------------------------------------------------------------
    # Drive loop
    # ------------------------------------------------------------------

    def run_to_completion(self) -> None:
        """Drive all guest asynchronous work on a private loop on this thread."""
        config = self.vm.config
        event_loop.run(
            self.drive(),
            debug=config.debug,
            slow_callback_duration=config.slow_callback_duration,
        )

    async def drive(self) -> None:
        """Alternate dispatch passes with guest bookkeeping until idle."""
        vm = self.vm
        state = self.state
        while True:
            await self._dispatch()
            if state.awaiting_all:
                state.awaiting_all = False
                logger.debug("Resuming fibers waiting on all tasks")
                vm.call(state.class_handle, state.resume_waiting)
            elif vm.call(state.class_handle, state.has_next):
                logger.debug("Running next scheduled fiber")
                vm.call(state.class_handle, state.run_next_scheduled)
            else:
                break
        logger.debug("Drive loop idle after %d pass(es)", self._pass_count)

    async def _dispatch(self) -> None:
        """Run queued tasks until none are queued and none are in flight."""
        queue = self.state.queue
        if not queue:
            return
        self._pass_count += 1
        arrivals: asyncio.Queue = asyncio.Queue()
        in_flight: Dict[int, Tuple[asyncio.Future, CompletionTask]] = {}
        indices = itertools.count()
        try:
            while True:
                drained = queue.drain()
                for position, task in enumerate(drained):
                    index = next(indices)
                    try:
                        future = task.spawn()
                    except BaseException:
                        # Tasks after the failing one never reach the loop
                        for leftover in drained[position + 1:]:
                            leftover.close()
                        raise
                    future.add_done_callback(lambda _f, i=index: arrivals.put_nowait(i))
                    in_flight[index] = (future, task)
                    logger.debug("Spawned %s as #%d", task.label, index)
                self._in_flight = len(in_flight)
                if not in_flight:
                    break
                index = await arrivals.get()
                future, task = in_flight.pop(index)
                self._in_flight = len(in_flight)
                # Re-raises the operation's exception, if any
                future.result()
                logger.debug("Completed %s (#%d)", task.label, index)
                task.complete(self.vm)
                self._completed_count += 1
        finally:
            for future, task in in_flight.values():
                future.cancel()
            self._in_flight = 0

    # ------------------------------------------------------------------
    # Introspection / lifetime
    # ------------------------------------------------------------------

    @property
    def awaiting_all(self) -> bool:
        return self.state.awaiting_all

    @property
    def pending(self) -> int:
        return len(self.state.queue) + self._in_flight

    def statistics(self) -> Dict[str, Any]:
        """Get scheduler statistics"""
        return {
            "tasks_scheduled": self._scheduled_count,
            "tasks_completed": self._completed_count,
            "tasks_pending": self.pending,
            "dispatch_passes": self._pass_count,
            "awaiting_all": self.state.awaiting_all,
        }

    def close(self) -> None:
        """Drop queued tasks and release the guest handles."""
        if self._closed:
            return
        self._closed = True
        for task in self.state.queue.drain():
            task.close()
        self.state.release()

    def __repr__(self) -> str:
        stats = self.statistics()
        return (f"Scheduler(tasks={stats['tasks_completed']}/{stats['tasks_scheduled']}, "
                f"pending={stats['tasks_pending']}, "
                f"awaiting_all={stats['awaiting_all']})")
