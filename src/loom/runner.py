"""Loading and running guest scripts.

A guest script is a Python file defining ``main(vm)``. It runs as the root
fiber; once it finished or suspended, the scheduler (if the script loaded
it) drives the remaining asynchronous work.
"""

from __future__ import annotations

import ast
import importlib.util
import itertools
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import LoomConfig, parse_file_flags
from .errors import ScriptLoadError
from .vm import VM

logger = logging.getLogger("loom.runner")

_script_ids = itertools.count(1)


def read_script(path: str) -> str:
    try:
        return Path(path).read_text()
    except OSError as exc:
        raise ScriptLoadError(f"Cannot read {path}: {exc.strerror or exc}") from exc


def check_script(path: str) -> Dict[str, Any]:
    """Syntax-check a script without running it.

    Returns the script's inline flags.

    Raises:
        ScriptLoadError: on a syntax error or a missing top-level ``main``.
    """
    source = read_script(path)
    try:
        tree = ast.parse(source, filename=path)
    except SyntaxError as exc:
        raise ScriptLoadError(f"{path}:{exc.lineno}: {exc.msg}") from exc
    has_main = any(
        isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == "main"
        for node in tree.body
    )
    if not has_main:
        raise ScriptLoadError(f"{path} does not define a top-level main(vm)")
    return parse_file_flags(source)


def load_script(path: str) -> Tuple[Callable[[VM], Any], Dict[str, Any]]:
    """Import a script file and return its ``main`` and inline flags."""
    flags = check_script(path)
    module_name = f"loom_script_{next(_script_ids)}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ScriptLoadError(f"Cannot load {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise ScriptLoadError(
            f"{path}: error while importing: {type(exc).__name__}: {exc}"
        ) from exc
    main = getattr(module, "main", None)
    if not callable(main):
        raise ScriptLoadError(f"{path} does not define a top-level main(vm)")
    return main, flags


def run_main(
    main: Callable[[VM], Any],
    *,
    module_name: str = "main",
    config: Optional[LoomConfig] = None,
    write: Optional[Callable[[str], Any]] = None,
    on_error: Optional[Callable[..., Any]] = None,
    arguments: Optional[List[str]] = None,
) -> VM:
    """Interpret *main* and drive its asynchronous work to completion.

    The VM is returned still alive so callers can inspect it; free it
    when done.
    """
    vm = VM(config=config, write=write, on_error=on_error, arguments=arguments)
    vm.interpret(module_name, main)
    # Only drive the loop if the script loaded the scheduler
    if vm.scheduler is not None:
        vm.scheduler.run_to_completion()
        logger.debug("Scheduler finished: %r", vm.scheduler)
    return vm


def run_script(
    path: str,
    *,
    options: Optional[Dict[str, Any]] = None,
    write: Optional[Callable[[str], Any]] = None,
    on_error: Optional[Callable[..., Any]] = None,
    arguments: Optional[List[str]] = None,
    before_run: Optional[Callable[[LoomConfig], Any]] = None,
) -> VM:
    """Load and run a script file.

    Inline flags in the script configure the VM; *options* (for example
    from the command line) take precedence over them. *before_run* is
    called with the resolved config once the script has loaded.
    """
    main, flags = load_script(path)
    config = LoomConfig.from_flags(flags).merged(**(options or {}))
    if before_run is not None:
        before_run(config)
    return run_main(
        main,
        module_name=Path(path).stem,
        config=config,
        write=write,
        on_error=on_error,
        arguments=[path] + list(arguments or []),
    )
