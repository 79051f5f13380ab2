"""Loom runtime configuration.

A script can configure the run from a comment near its top:

    # @loom: debug=true; log_level=info
    # @loom: {"slow_callback_duration": 0.05}

Only ``#`` comments within the first lines of the file are read, so a
directive further down (or inside a string) has no effect. Command line
options are merged over whatever the script asks for.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger("loom.config")


@dataclass(frozen=True)
class LoomConfig:
    """Options for the VM and its scheduler's drive loop"""

    debug: bool = False
    log_level: str = "WARNING"
    slow_callback_duration: Optional[float] = None

    @classmethod
    def from_flags(cls, flags: Dict[str, Any]) -> "LoomConfig":
        """Build a config from parsed flags, ignoring unknown keys."""
        return cls().merged(**flags)

    def merged(self, **overrides: Any) -> "LoomConfig":
        known = {f.name for f in dataclasses.fields(self)}
        values = {k: v for k, v in overrides.items() if k in known and v is not None}
        if "log_level" in values:
            values["log_level"] = str(values["log_level"]).upper()
        if "debug" in values:
            values["debug"] = bool(values["debug"])
        if "slow_callback_duration" in values:
            values["slow_callback_duration"] = float(values["slow_callback_duration"])
        return dataclasses.replace(self, **values)


_DIRECTIVE = re.compile(r"^\s*#\s*@loom\b:?\s*(?P<body>.*)$")
_HEADER_LINES = 25


def parse_file_flags(source: str) -> Dict[str, Any]:
    """Collect ``# @loom:`` directives from the header of *source*."""
    flags: Dict[str, Any] = {}
    for line in source.splitlines()[:_HEADER_LINES]:
        match = _DIRECTIVE.match(line)
        if match is None:
            continue
        body = match.group("body").strip()
        if body.startswith("{"):
            try:
                parsed = json.loads(body)
            except ValueError:
                logger.debug("Ignoring malformed @loom directive: %s", body)
                continue
            if isinstance(parsed, dict):
                flags.update(parsed)
            continue
        for assignment in re.split(r"[;,]", body):
            key, sep, raw = assignment.partition("=")
            if sep and key.strip():
                flags[key.strip()] = _coerce(raw.strip())
    return flags


_BOOLEANS = {"true": True, "yes": True, "on": True,
             "false": False, "no": False, "off": False}


def _coerce(raw: str) -> Any:
    if raw.lower() in _BOOLEANS:
        return _BOOLEANS[raw.lower()]
    for number in (int, float):
        try:
            return number(raw)
        except ValueError:
            pass
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return raw[1:-1]
    return raw
