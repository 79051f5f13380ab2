# Two fibers sleep for different durations; the main fiber waits for both.
# @loom: log_level=warning


def main(vm):
    Scheduler = vm.import_variable("scheduler", "Scheduler")
    Timer = vm.import_variable("timer", "Timer")

    def worker(name, milliseconds):
        def run():
            yield from Timer.sleep(milliseconds)
            vm.write(f"{name} finished after {milliseconds}ms\n")
        run.__name__ = name
        return run

    Scheduler.add(worker("slow", 500))
    Scheduler.add(worker("fast", 100))
    yield from Scheduler.awaitAll()
    vm.write("all tasks finished\n")
