"""
Script-side half of the scheduler.

The guest keeps two lists: fibers added with ``Scheduler.add`` that have not
started yet, and fibers blocked in ``Scheduler.awaitAll``. Whenever a fiber
blocks (on a timer, on I/O, on await-all) it transfers control to the next
scheduled fiber, or suspends back to the host when there is none.
"""

import inspect
from collections import deque

from ..fiber import Transfer
from ..scheduler import Scheduler
from . import ForeignClass, Module


def _capture_methods(vm) -> None:
    Scheduler.attach(vm)


def _await_all(vm) -> None:
    Scheduler.attach(vm).request_await_all()


def _source(vm, scope) -> None:
    scheduler = scope.define_class("Scheduler")
    scope.foreign(scheduler, "captureMethods_()")
    scope.foreign(scheduler, "awaitAll_()")

    scheduled = deque()
    waiting = []

    @scheduler.method("runNextScheduled_()")
    def run_next_scheduled():
        if scheduled:
            return (yield Transfer(scheduled.popleft()))
        return (yield)

    @scheduler.method("add(_)")
    def add(callable_):
        def body():
            outcome = callable_()
            if inspect.isgenerator(outcome):
                yield from outcome
            yield from run_next_scheduled()

        fiber = vm.new_fiber(body, name=getattr(callable_, "__name__", "scheduled"))
        scheduled.append(fiber)
        return fiber

    @scheduler.method("hasNext")
    def has_next():
        return bool(scheduled)

    @scheduler.method("awaitAll()")
    def await_all():
        waiting.append(vm.current_fiber)
        scheduler.awaitAll_()
        return (yield from run_next_scheduled())

    @scheduler.method("resumeWaitingFibers_()")
    def resume_waiting_fibers():
        fibers = list(waiting)
        waiting.clear()
        for fiber in fibers:
            vm.resume_fiber(fiber)

    @scheduler.method("resume_(_)")
    def resume(fiber):
        vm.resume_fiber(fiber)

    @scheduler.method("resume_(_,_)")
    def resume_with(fiber, value):
        vm.resume_fiber(fiber, value)

    @scheduler.method("resumeError_(_,_)")
    def resume_error(fiber, message):
        vm.resume_fiber_error(fiber, message)

    scheduler.captureMethods_()


def init_module() -> Module:
    scheduler_class = ForeignClass()
    scheduler_class.methods["captureMethods_()"] = _capture_methods
    scheduler_class.methods["awaitAll_()"] = _await_all

    module = Module("scheduler", _source, description="Fiber scheduling and await-all")
    module.classes["Scheduler"] = scheduler_class
    return module
