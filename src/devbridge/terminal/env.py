"""Environment allow-list for child processes.

Only variables whose names start with one of the safe prefixes are passed to
commands started from chat. Everything else, including tokens and API keys
exported into the bridge's own environment, is dropped.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

SAFE_ENV_PREFIXES: tuple[str, ...] = (
    # Search paths and locale
    "PATH",
    "LANG",
    "LANGUAGE",
    "LC_",
    "TZ",
    # Terminal
    "TERM",
    "COLORTERM",
    "COLUMNS",
    "LINES",
    # Identity
    "HOME",
    "USER",
    "LOGNAME",
    "SHELL",
    "TMPDIR",
    "TEMP",
    "TMP",
    "XDG_",
    # Language and tooling roots
    "PYTHONPATH",
    "PYTHONHOME",
    "VIRTUAL_ENV",
    "CONDA_",
    "PYENV_",
    "NVM_",
    "NODE_PATH",
    "GOPATH",
    "GOROOT",
    "CARGO_HOME",
    "RUSTUP_HOME",
    "JAVA_HOME",
    "GRADLE_HOME",
    "MAVEN_HOME",
    # Windows essentials
    "SYSTEMROOT",
    "SYSTEMDRIVE",
    "COMSPEC",
    "WINDIR",
    "APPDATA",
    "LOCALAPPDATA",
    "PROGRAMFILES",
)


def is_safe_env_name(name: str, extra_prefixes: Iterable[str] = ()) -> bool:
    """True if ``name`` starts with an allow-listed prefix (case-insensitive)."""
    upper = name.upper()
    prefixes = (*SAFE_ENV_PREFIXES, *(p.upper() for p in extra_prefixes))
    return upper.startswith(prefixes)


def build_child_env(
    environ: Mapping[str, str] | None = None,
    extra_prefixes: Iterable[str] = (),
) -> dict[str, str]:
    """Filter an environment down to the allow-listed variables.

    Args:
        environ: Source environment. Defaults to os.environ.
        extra_prefixes: Additional prefixes from terminal.env_passthrough.

    Returns:
        A new dict safe to hand to a child process.
    """
    source = os.environ if environ is None else environ
    extra = tuple(extra_prefixes)
    return {k: v for k, v in source.items() if is_safe_env_name(k, extra)}
