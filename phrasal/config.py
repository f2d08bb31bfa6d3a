"""
config.py

Engine configuration.

Defaults can be overridden per process through environment variables:

    PHRASAL_MAX_EXPANSIONS   frames a thread may expand between two consumed
                             characters before the session is failed
    PHRASAL_KEEP_HISTORY     keep per-character thread sets for retreat()
    PHRASAL_DEBUG            trace session lifecycle and faults to stderr
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from .errors import ConfigurationError

DEFAULT_MAX_EXPANSIONS = 10_000

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name}={raw!r} is not a boolean")


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name}={raw!r} is not an integer")


@dataclass(frozen=True)
class EngineConfig:
    max_expansions: int = DEFAULT_MAX_EXPANSIONS
    keep_history: bool = True
    debug: bool = False

    def __post_init__(self):
        if not isinstance(self.max_expansions, int) or isinstance(self.max_expansions, bool) or self.max_expansions < 1:
            raise ConfigurationError(f"max_expansions must be a positive int, got {self.max_expansions!r}")
        if not isinstance(self.keep_history, bool):
            raise ConfigurationError("keep_history must be a bool")
        if not isinstance(self.debug, bool):
            raise ConfigurationError("debug must be a bool")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        return cls(
            max_expansions=_env_int(env, "PHRASAL_MAX_EXPANSIONS", DEFAULT_MAX_EXPANSIONS),
            keep_history=_env_flag(env, "PHRASAL_KEEP_HISTORY", True),
            debug=_env_flag(env, "PHRASAL_DEBUG", False),
        )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "EngineConfig":
        """Build from a plain dict (e.g. a loaded settings file); unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"unknown engine config keys: {', '.join(unknown)}")
        return cls(**dict(mapping))
