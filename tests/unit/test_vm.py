"""Guest VM tests: fibers, calls, handles and modules."""

import threading

import pytest

from loom.errors import (
    FiberAbort,
    GuestError,
    GuestLookupError,
    GuestRuntimeError,
    HandleReleasedError,
    IncorrectArgumentCount,
    ThreadAffinityError,
)
from loom.fiber import FiberState, Transfer
from loom.handle import make_signature, parse_signature
from loom.modules import ForeignClass, Module, ModuleRegistry
from loom.vm import VM, GuestClass


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("signature, expected", [
    ("hasNext", ("hasNext", 0)),
    ("flush()", ("flush", 0)),
    ("sleep(_)", ("sleep", 1)),
    ("resume_(_,_)", ("resume_", 2)),
])
def test_parse_signature(signature, expected):
    assert parse_signature(signature) == expected


@pytest.mark.parametrize("signature", ["(_)", "sleep(x)", "sleep(_"])
def test_parse_signature_rejects_malformed(signature):
    with pytest.raises(ValueError):
        parse_signature(signature)


def test_make_signature():
    assert make_signature("startTimer_", 2) == "startTimer_(_,_)"
    assert make_signature("flush", 0) == "flush()"


# ---------------------------------------------------------------------------
# Fibers
# ---------------------------------------------------------------------------

def test_plain_main_runs_to_completion(vm):
    fiber = vm.interpret("main", lambda machine: machine.write("hi\n") or 7)

    assert fiber.state is FiberState.DONE
    assert fiber.result == 7


def test_suspended_fiber_receives_resume_value(vm, output):
    def main(machine):
        value = yield
        machine.write(f"got {value}\n")
        return value * 2

    fiber = vm.interpret("main", main)
    assert fiber.state is FiberState.SUSPENDED
    assert output == []

    vm.resume_fiber(fiber, 21)
    assert output == ["got 21\n"]
    assert fiber.result == 42


def test_transfer_hands_control_to_another_fiber(vm, output):
    def worker():
        value = yield
        output.append(f"worker got {value}")

    other = vm.new_fiber(worker)
    vm.resume_fiber(other)

    def main(machine):
        output.append("main before")
        yield Transfer(other, "baton")
        output.append("main after")

    fiber = vm.interpret("main", main)

    assert output == ["main before", "worker got baton"]
    assert fiber.state is FiberState.SUSPENDED
    assert other.is_done


def test_current_fiber_tracks_the_running_fiber(vm):
    seen = []

    def main(machine):
        seen.append(machine.current_fiber)
        yield

    fiber = vm.interpret("main", main)

    assert seen == [fiber]
    assert vm.current_fiber is None


def test_resuming_a_finished_fiber_fails(vm):
    fiber = vm.interpret("main", lambda machine: None)
    with pytest.raises(GuestRuntimeError, match="finished fiber"):
        vm.resume_fiber(fiber)


def test_resuming_a_running_fiber_fails(vm):
    def main(machine):
        machine.resume_fiber(machine.current_fiber)
        yield

    with pytest.raises(GuestRuntimeError, match="already been called"):
        vm.interpret("main", main)


def test_aborted_fiber_reports_its_error(vm, errors):
    def main(machine):
        yield
        machine.abort_fiber("bad input")

    fiber = vm.interpret("main", main)
    with pytest.raises(GuestRuntimeError, match="bad input") as info:
        vm.resume_fiber(fiber)

    assert info.value.fiber is fiber
    assert isinstance(info.value.__cause__, FiberAbort)
    assert fiber.state is FiberState.ABORTED
    assert errors == [(fiber, "bad input")]


def test_resume_error_can_be_caught_by_the_fiber(vm, output):
    def main(machine):
        try:
            yield
        except GuestError as error:
            output.append(f"caught {error}")

    fiber = vm.interpret("main", main)
    vm.resume_fiber_error(fiber, "timeout")

    assert output == ["caught timeout"]
    assert fiber.is_done


def test_host_errors_are_not_wrapped(vm):
    handle = vm.make_handle(1)
    handle.release()

    def main(machine):
        return handle.value

    with pytest.raises(HandleReleasedError):
        vm.interpret("main", main)


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------

def _counter_class():
    counter = GuestClass("Counter", "test")
    total = {"value": 0}

    @counter.method("add(_)")
    def add(amount):
        total["value"] += amount
        return total["value"]

    @counter.method("total")
    def current():
        return total["value"]

    @counter.method("fail()")
    def fail():
        raise KeyError("missing")

    @counter.method("later()")
    def later():
        yield
        return "never"

    @counter.method("now()")
    def now():
        return "immediately"
        yield

    return counter


def test_call_uses_resolved_handles(vm):
    counter = vm.make_handle(_counter_class())
    add = vm.make_call_handle("add(_)")
    total = vm.make_call_handle("total")

    vm.call(counter, add, 5)
    assert vm.call(counter, add, vm.make_handle(3)) == 8
    assert vm.call(counter, total) == 8
    assert vm.has_method(counter, add)
    assert not vm.has_method(counter, vm.make_call_handle("sub(_)"))


def test_call_checks_arity(vm):
    add = vm.make_call_handle("add(_)")
    with pytest.raises(IncorrectArgumentCount) as info:
        vm.call(_counter_class(), add)
    assert info.value.expected == 1
    assert info.value.given == 0


def test_call_to_missing_method_is_a_runtime_error(vm):
    with pytest.raises(GuestRuntimeError, match="does not implement 'sub\\(_\\)'"):
        vm.call(_counter_class(), vm.make_call_handle("sub(_)"), 1)


def test_call_wraps_script_exceptions(vm):
    with pytest.raises(GuestRuntimeError) as info:
        vm.call(_counter_class(), vm.make_call_handle("fail()"))
    assert isinstance(info.value.__cause__, KeyError)


def test_call_runs_generator_methods_in_a_new_fiber(vm):
    counter = _counter_class()
    assert vm.call(counter, vm.make_call_handle("now()")) == "immediately"
    assert vm.call(counter, vm.make_call_handle("later()")) is None


def test_attribute_dispatch_by_name_and_arity():
    counter = _counter_class()
    counter.add(2)

    assert counter.total() == 2
    with pytest.raises(GuestLookupError, match="does not implement 'add\\(_,_\\)'"):
        counter.add(1, 2)
    with pytest.raises(AttributeError):
        counter._private


# ---------------------------------------------------------------------------
# Handles and lifetime
# ---------------------------------------------------------------------------

def test_released_handle_cannot_be_used(vm):
    handle = vm.make_handle("value")
    assert handle.value == "value"
    handle.release()
    handle.release()

    assert handle.released
    with pytest.raises(HandleReleasedError):
        handle.value


def test_free_releases_every_handle():
    vm = VM()
    handle = vm.make_handle(object())
    call_handle = vm.make_call_handle("go()")
    assert vm.handle_count == 2

    vm.free()

    assert vm.is_freed
    assert handle.released and call_handle.released
    with pytest.raises(HandleReleasedError, match="freed"):
        vm.make_handle(1)


def test_vm_rejects_other_threads(vm):
    caught = []

    def worker():
        try:
            vm.make_handle(1)
        except ThreadAffinityError as exc:
            caught.append(exc)

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()

    assert len(caught) == 1


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------

def _greeting_registry(calls):
    def source(vm, scope):
        greeter = scope.define_class("Greeter")
        scope.foreign(greeter, "hello(_)")
        calls.append("loaded")

    registry = ModuleRegistry()
    registry.register(Module(
        "greeting", source,
        classes={"Greeter": ForeignClass({"hello(_)": lambda vm, name: f"hello {name}"})},
    ))
    return registry


def test_module_loads_once_and_binds_foreign_methods():
    calls = []
    vm = VM(registry=_greeting_registry(calls))

    greeter = vm.import_variable("greeting", "Greeter")
    vm.import_module("greeting")

    assert calls == ["loaded"]
    assert greeter.hello("loom") == "hello loom"
    assert vm.loaded_modules == ["greeting"]
    assert vm.get_variable("greeting", "Greeter").value is greeter
    vm.free()


def test_module_lookup_errors(vm):
    with pytest.raises(GuestLookupError, match="Could not load module 'nope'"):
        vm.import_module("nope")
    with pytest.raises(GuestLookupError, match="not loaded"):
        vm.get_variable("timer", "Timer")
    with pytest.raises(GuestLookupError, match="variable named 'Clock'"):
        vm.import_variable("timer", "Clock")


def test_missing_foreign_method_fails_module_load():
    def source(vm, scope):
        scope.foreign(scope.define_class("Broken"), "missing()")

    registry = ModuleRegistry()
    registry.register(Module("broken", source))
    vm = VM(registry=registry)

    with pytest.raises(GuestLookupError, match="Could not find foreign method 'missing\\(\\)'"):
        vm.import_module("broken")
    vm.free()


def test_registry_rejects_duplicates():
    registry = ModuleRegistry()
    registry.register(Module("a", lambda vm, scope: None))
    with pytest.raises(ValueError):
        registry.register(Module("a", lambda vm, scope: None))
