"""Tests for the loom command line."""

import os

from click.testing import CliRunner

import loom.runner
from loom import __version__
from loom.cli import cli


SCHEDULED_SCRIPT = """\
def main(vm):
    Scheduler = vm.import_variable("scheduler", "Scheduler")
    Timer = vm.import_variable("timer", "Timer")

    def late():
        yield from Timer.sleep(30)
        vm.write("late\\n")

    def early():
        yield from Timer.sleep(5)
        vm.write("early\\n")

    Scheduler.add(late)
    Scheduler.add(early)
    yield from Scheduler.awaitAll()
    vm.write("joined\\n")
"""


class TestRunCommand:
    """Tests for the run command."""

    def test_runs_fibers_in_completion_order(self, tmp_path):
        script = tmp_path / "timers.py"
        script.write_text(SCHEDULED_SCRIPT)

        result = CliRunner().invoke(cli, ["run", str(script)])

        assert result.exit_code == 0, result.output
        lines = [line for line in result.output.splitlines() if line]
        assert lines == ["early", "late", "joined"]

    def test_stats_table(self, tmp_path):
        script = tmp_path / "timers.py"
        script.write_text(SCHEDULED_SCRIPT)

        result = CliRunner().invoke(cli, ["run", "--stats", str(script)])

        assert result.exit_code == 0, result.output
        assert "tasks_completed" in result.output
        assert "dispatch_passes" in result.output

    def test_passes_script_arguments(self, tmp_path):
        script = tmp_path / "args.py"
        script.write_text(
            "def main(vm):\n"
            "    Process = vm.import_variable('os', 'Process')\n"
            "    vm.write(' '.join(Process.arguments()) + '\\n')\n"
        )

        result = CliRunner().invoke(cli, ["run", str(script), "one", "two"])

        assert result.exit_code == 0, result.output
        assert "one two" in result.output

    def test_runtime_error_exits_nonzero(self, tmp_path):
        script = tmp_path / "negative.py"
        script.write_text(
            "def main(vm):\n"
            "    Timer = vm.import_variable('timer', 'Timer')\n"
            "    yield from Timer.sleep(-5)\n"
        )

        result = CliRunner().invoke(cli, ["run", str(script)])

        assert result.exit_code == 1
        assert "Milliseconds cannot be negative." in result.output

    def test_script_without_main(self, tmp_path):
        script = tmp_path / "empty.py"
        script.write_text("x = 1\n")

        result = CliRunner().invoke(cli, ["run", str(script)])

        assert result.exit_code == 1
        assert "top-level" in result.output

    def test_script_is_parsed_once(self, tmp_path, monkeypatch):
        script = tmp_path / "once.py"
        script.write_text("# @loom: log_level=error\ndef main(vm):\n    vm.write('ok\\n')\n")
        calls = []
        original = loom.runner.check_script

        def counting_check(path):
            calls.append(path)
            return original(path)

        monkeypatch.setattr(loom.runner, "check_script", counting_check)

        result = CliRunner().invoke(cli, ["run", str(script)])

        assert result.exit_code == 0, result.output
        assert "ok" in result.output
        assert calls == [str(script)]

    def test_import_error_exits_nonzero(self, tmp_path):
        script = tmp_path / "explodes.py"
        script.write_text("import not_a_real_module_xyz\ndef main(vm):\n    pass\n")

        result = CliRunner().invoke(cli, ["run", str(script)])

        assert result.exit_code == 1
        assert "error while importing" in result.output
        assert "ModuleNotFoundError" in result.output

    def test_example_script(self, examples_dir):
        result = CliRunner().invoke(cli, ["run", os.path.join(examples_dir, "two_timers.py")])

        assert result.exit_code == 0, result.output
        assert result.output.index("fast finished") < result.output.index("slow finished")


class TestCheckCommand:
    """Tests for the check command."""

    def test_valid_script_with_flags(self, tmp_path):
        script = tmp_path / "flagged.py"
        script.write_text("# @loom: debug=true\ndef main(vm):\n    pass\n")

        result = CliRunner().invoke(cli, ["check", str(script)])

        assert result.exit_code == 0
        assert "Script is valid" in result.output
        assert "debug = True" in result.output

    def test_syntax_error(self, tmp_path):
        script = tmp_path / "broken.py"
        script.write_text("def main(vm:\n")

        result = CliRunner().invoke(cli, ["check", str(script)])

        assert result.exit_code == 1
        assert "broken.py" in result.output


class TestModulesCommand:
    """Tests for the modules command."""

    def test_lists_foreign_methods(self):
        result = CliRunner().invoke(cli, ["modules"])

        assert result.exit_code == 0
        for name in ("scheduler", "timer", "io", "os"):
            assert name in result.output
        assert "startTimer_(_,_)" in result.output
        assert "awaitAll_()" in result.output


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
