"""
errors.py

Exception hierarchy for the phrasal engine.
-------------------------------------------

Configuration problems are raised synchronously at construction or
registration time. Parse-time mismatches are never raised: they prune
threads. Session and engine errors only ever affect the session that
produced them.
"""


class PhrasalError(Exception):
    """Base class for every error raised by phrasal."""


# -------------------------------------------------------------------------
# Configuration
# -------------------------------------------------------------------------


class ConfigurationError(PhrasalError):
    """Raised when a grammar, registry or runtime is configured incorrectly."""


class MalformedNodeError(ConfigurationError):
    """Raised when a grammar node is constructed with invalid fields."""


class SelfExtensionError(ConfigurationError):
    """Raised when a phrase is registered as an extension of itself."""


class ConflictingExtensionError(ConfigurationError):
    """
    Raised when an extension identity is registered with a generator that
    differs from the one already known under that identity.
    """


# -------------------------------------------------------------------------
# Context
# -------------------------------------------------------------------------


class ContextError(PhrasalError):
    """Base class for context-related errors."""


class BadContextError(ContextError):
    """Raised when context data is not a mapping or cannot be snapshotted."""


# -------------------------------------------------------------------------
# Sessions
# -------------------------------------------------------------------------


class SessionError(PhrasalError):
    """Base class for session lifecycle errors."""


class UnknownSessionError(SessionError):
    """Raised for a handle that was never started or has already ended."""


class SessionFailedError(SessionError):
    """
    Raised when an engine invariant broke inside one session.

    The session is discarded; other sessions are unaffected.
    """


# -------------------------------------------------------------------------
# Engine
# -------------------------------------------------------------------------


class EngineInvariantError(PhrasalError):
    """Raised when continuation or trace state is internally inconsistent."""


class ExpansionLimitError(EngineInvariantError):
    """
    Raised when a thread expands too many nodes without consuming input.

    This is how non-consuming recursion (a phrase that reaches itself,
    directly or through an extension, before reading a character) shows up.
    """
