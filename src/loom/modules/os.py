"""OS module: platform and process information."""

import os
import sys
from pathlib import Path

from . import ForeignClass, Module


def _platform_name(vm) -> str:
    return sys.platform


def _is_posix(vm) -> bool:
    return os.name == "posix"


def _home_path(vm) -> str:
    try:
        return str(Path.home())
    except RuntimeError:
        vm.abort_fiber("Cannot get the user's home directory")


def _all_arguments(vm) -> list:
    return list(vm.arguments)


def _version(vm) -> str:
    from .. import __version__
    return __version__


def _cwd(vm) -> str:
    try:
        return os.getcwd()
    except OSError:
        vm.abort_fiber("Cannot get current working directory.")


def _pid(vm) -> int:
    return os.getpid()


def _ppid(vm) -> int:
    return os.getppid()


def _source(vm, scope) -> None:
    platform = scope.define_class("Platform")
    for signature in ("name", "isPosix", "homePath"):
        scope.foreign(platform, signature)

    process = scope.define_class("Process")
    for signature in ("allArguments", "version", "cwd", "pid", "ppid"):
        scope.foreign(process, signature)

    @process.method("arguments")
    def arguments():
        # The first entry is the script itself
        return process.allArguments()[1:]


def init_module() -> Module:
    platform_class = ForeignClass({
        "name": _platform_name,
        "isPosix": _is_posix,
        "homePath": _home_path,
    })
    process_class = ForeignClass({
        "allArguments": _all_arguments,
        "version": _version,
        "cwd": _cwd,
        "pid": _pid,
        "ppid": _ppid,
    })

    module = Module("os", _source, description="Platform and process information")
    module.classes["Platform"] = platform_class
    module.classes["Process"] = process_class
    return module
