"""IO module.

Stdout flushing, plus file reads and writes that run on the event loop's
executor while the calling fiber is suspended. Files are UTF-8. A failed
read or write (I/O or decoding) resumes the fiber with an error instead of
a value.
"""

import asyncio
from pathlib import Path

from ..scheduler import Scheduler
from . import ForeignClass, Module


def _flush(vm) -> None:
    try:
        vm.flush()
    except OSError:
        vm.abort_fiber("Stdout failed to flush")


def _start_io(vm, fiber, label, blocking_call) -> None:
    scheduler = Scheduler.attach(vm)
    fiber_handle = vm.make_handle(fiber)
    outcome = {}

    async def operation():
        loop = asyncio.get_running_loop()
        try:
            outcome["value"] = await loop.run_in_executor(None, blocking_call)
        except OSError as exc:
            outcome["error"] = f"{exc.strerror or exc}: {exc.filename or label}"
        except UnicodeError as exc:
            outcome["error"] = f"{exc}: {label}"

    def continuation(vm) -> None:
        target = fiber_handle.value
        fiber_handle.release()
        if "error" in outcome:
            resume = scheduler.resume_error(target, outcome["error"])
        else:
            resume = scheduler.resume_with(target, outcome["value"])
        resume(vm)

    scheduler.schedule(operation(), continuation, label=label)


def _start_read(vm, path, fiber) -> None:
    _start_io(vm, fiber, f"read({path})", lambda: Path(path).read_text(encoding="utf-8"))


def _start_write(vm, path, contents, fiber) -> None:
    _start_io(vm, fiber, f"write({path})", lambda: Path(path).write_text(contents, encoding="utf-8"))


def _source(vm, scope) -> None:
    guest_scheduler = vm.import_variable("scheduler", "Scheduler")

    stdout = scope.define_class("Stdout")
    scope.foreign(stdout, "flush()")

    file = scope.define_class("File")
    scope.foreign(file, "startRead_(_,_)")
    scope.foreign(file, "startWrite_(_,_,_)")

    def check_path(path):
        if not isinstance(path, str):
            vm.abort_fiber("Path must be a string.")

    @file.method("read(_)")
    def read(path):
        check_path(path)
        file.startRead_(path, vm.current_fiber)
        return (yield from guest_scheduler.runNextScheduled_())

    @file.method("write(_,_)")
    def write(path, contents):
        check_path(path)
        if not isinstance(contents, str):
            vm.abort_fiber("Contents must be a string.")
        file.startWrite_(path, contents, vm.current_fiber)
        return (yield from guest_scheduler.runNextScheduled_())


def init_module() -> Module:
    stdout_class = ForeignClass()
    stdout_class.methods["flush()"] = _flush

    file_class = ForeignClass()
    file_class.methods["startRead_(_,_)"] = _start_read
    file_class.methods["startWrite_(_,_,_)"] = _start_write

    module = Module("io", _source, description="Stdout and asynchronous file access")
    module.classes["Stdout"] = stdout_class
    module.classes["File"] = file_class
    return module
