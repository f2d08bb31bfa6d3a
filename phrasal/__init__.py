"""
Phrasal - Incremental, extensible grammar engine for natural-language commands.

Public API:
- Node model: Literal, DynamicValue, Bounds, Sequence, Choice, Argument, Phrase, NO_MATCH
- ExtensionRegistry: add-ons broaden existing phrases without touching them
- PhraseRuntime: start / advance / retreat / end parse sessions
- ContextProvider / ParseContext: read-only runtime state for dynamic values
- values: built-in string, number, time, duration and context values
"""

from .nodes import NO_MATCH, Argument, Bounds, Choice, DynamicValue, Literal, Node, Phrase, Sequence
from .extension_registry import ExtensionRegistry, RegistrySnapshot
from .context import ContextProvider, ParseContext
from .config import EngineConfig
from .engine import DerivationEngine, FaultReport
from .synthesizer import Completion
from .candidates import Candidate
from .runtime import PhraseRuntime, SessionHandle, StepResult
from .errors import (
    PhrasalError,
    ConfigurationError,
    MalformedNodeError,
    SelfExtensionError,
    ConflictingExtensionError,
    ContextError,
    BadContextError,
    SessionError,
    UnknownSessionError,
    SessionFailedError,
    EngineInvariantError,
    ExpansionLimitError,
)

# Derive version from package metadata
try:
    from importlib.metadata import version
    __version__ = version("phrasal")
except Exception:
    __version__ = "0.1.0"

__all__ = [
    "NO_MATCH",
    "Node",
    "Literal",
    "DynamicValue",
    "Bounds",
    "Sequence",
    "Choice",
    "Argument",
    "Phrase",
    "ExtensionRegistry",
    "RegistrySnapshot",
    "ContextProvider",
    "ParseContext",
    "EngineConfig",
    "DerivationEngine",
    "FaultReport",
    "Completion",
    "Candidate",
    "PhraseRuntime",
    "SessionHandle",
    "StepResult",
    "PhrasalError",
    "ConfigurationError",
    "MalformedNodeError",
    "SelfExtensionError",
    "ConflictingExtensionError",
    "ContextError",
    "BadContextError",
    "SessionError",
    "UnknownSessionError",
    "SessionFailedError",
    "EngineInvariantError",
    "ExpansionLimitError",
]
