"""Timer module: suspend the calling fiber for a number of milliseconds."""

import asyncio

from ..scheduler import Scheduler
from . import ForeignClass, Module


def _start_timer(vm, milliseconds, fiber) -> None:
    scheduler = Scheduler.attach(vm)
    scheduler.schedule(
        asyncio.sleep(milliseconds / 1000.0),
        scheduler.resume(fiber),
        label=f"timer({milliseconds}ms)",
    )


def _source(vm, scope) -> None:
    guest_scheduler = vm.import_variable("scheduler", "Scheduler")
    timer = scope.define_class("Timer")
    scope.foreign(timer, "startTimer_(_,_)")

    @timer.method("sleep(_)")
    def sleep(milliseconds):
        if isinstance(milliseconds, bool) or not isinstance(milliseconds, (int, float)):
            vm.abort_fiber("Milliseconds must be a number.")
        if milliseconds < 0:
            vm.abort_fiber("Milliseconds cannot be negative.")
        timer.startTimer_(milliseconds, vm.current_fiber)
        return (yield from guest_scheduler.runNextScheduled_())


def init_module() -> Module:
    timer_class = ForeignClass()
    timer_class.methods["startTimer_(_,_)"] = _start_timer

    module = Module("timer", _source, description="Millisecond timers")
    module.classes["Timer"] = timer_class
    return module
