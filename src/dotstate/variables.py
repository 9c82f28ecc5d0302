"""Environment-variable syntax conversion and expansion."""

from __future__ import annotations

import re
from typing import Mapping

_SHELL_VAR_RE = re.compile(r"\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)")
_PLATFORM_VAR_RE = re.compile(r"%(?P<name>[A-Za-z_][A-Za-z0-9_()]*)%")


def to_platform_syntax(text: str) -> str:
    """Rewrite ``$VAR`` and ``${VAR}`` references as ``%VAR%``."""

    return _SHELL_VAR_RE.sub(lambda match: f"%{match.group('braced') or match.group('bare')}%", text)


def lookup(environ: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive variable lookup, preferring an exact match."""

    if name in environ:
        return environ[name]
    folded = name.casefold()
    for key, value in environ.items():
        if key.casefold() == folded:
            return value
    return None


def expand_variables(text: str, environ: Mapping[str, str]) -> str:
    """Expand shell and platform variable references; unknown names are left as written."""

    def _replace(match: re.Match[str]) -> str:
        value = lookup(environ, match.group("name"))
        return match.group(0) if value is None else value

    return _PLATFORM_VAR_RE.sub(_replace, to_platform_syntax(text))
