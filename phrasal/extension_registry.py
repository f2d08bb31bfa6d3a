"""
extension_registry.py

Extension Registry
------------------

Add-ons broaden what an existing phrase accepts by registering an extension
for its identity:

    registry = ExtensionRegistry()
    registry.register("application", open_url_phrase)

Every thread that reaches a Phrase whose identity is "application" then also
forks into open_url_phrase's generated tree. The target phrase's definition is
never touched.

Rules:
    - register() is idempotent and order-irrelevant.
    - Self-extension is rejected at registration time.
    - One identity maps to one generator; a second, different generator under
      the same identity is a conflict.
    - resolve() returns direct extensions only, never the transitive closure.
    - Sessions read a RegistrySnapshot taken at start(); later writes only
      affect future sessions.

Fork order policy: the phrase's own tree first, then its extensions sorted by
extension identity.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple, Union

from .errors import ConflictingExtensionError, MalformedNodeError, SelfExtensionError
from .nodes import Phrase

Target = Union[str, Phrase]


def _target_identity(target: Target) -> str:
    if isinstance(target, Phrase):
        return target.identity
    if isinstance(target, str) and target:
        return target
    raise MalformedNodeError(f"extension target must be a Phrase or identity string, got {target!r}")


# -------------------------------------------------------------------------
# Snapshot
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the registry at one version."""

    version: int
    extensions: Mapping[str, Tuple[Phrase, ...]]

    def resolve(self, identity: str) -> Tuple[Phrase, ...]:
        return self.extensions.get(identity, ())

    def __len__(self) -> int:
        return sum(len(v) for v in self.extensions.values())


EMPTY_SNAPSHOT = RegistrySnapshot(version=0, extensions=MappingProxyType({}))


# -------------------------------------------------------------------------
# Registry
# -------------------------------------------------------------------------


class ExtensionRegistry:
    """
    Process-wide, read-mostly table: target identity -> extending phrases.

    Writes are serialized by a lock. Readers never lock during parsing: each
    session works off a RegistrySnapshot, cached until the next write.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._targets: Dict[str, Dict[str, Phrase]] = {}
        self._definitions: Dict[str, Phrase] = {}
        self._version = 0
        self._snapshot: Optional[RegistrySnapshot] = EMPTY_SNAPSHOT

    @property
    def version(self) -> int:
        return self._version

    def register(self, target: Target, extension: Phrase) -> bool:
        """
        Install `extension` wherever `target` occurs.

        Returns:
            True if the pair was added, False if it was already registered.

        Raises:
            SelfExtensionError: target and extension share an identity
            ConflictingExtensionError: extension's identity is already bound
                to a different generator
            MalformedNodeError: arguments are not phrases/identities
        """
        target_id = _target_identity(target)
        if not isinstance(extension, Phrase):
            raise MalformedNodeError(f"extension must be a Phrase, got {type(extension).__name__}")
        if extension.identity == target_id:
            raise SelfExtensionError(f"phrase {target_id!r} cannot extend itself")

        with self._lock:
            known = self._definitions.get(extension.identity)
            if known is not None and known.generate is not extension.generate:
                raise ConflictingExtensionError(
                    f"identity {extension.identity!r} is already registered with a different generator"
                )
            # A target phrase passed by value also pins its own identity
            if isinstance(target, Phrase):
                known_target = self._definitions.get(target_id)
                if known_target is not None and known_target.generate is not target.generate:
                    raise ConflictingExtensionError(
                        f"identity {target_id!r} is already registered with a different generator"
                    )

            bucket = self._targets.setdefault(target_id, {})
            if extension.identity in bucket:
                return False
            bucket[extension.identity] = extension
            self._definitions[extension.identity] = extension
            if isinstance(target, Phrase):
                self._definitions.setdefault(target_id, target)
            self._bump()
            return True

    def unregister(self, target: Target, extension_identity: str) -> bool:
        """Remove one registration (add-on unload). Returns False if absent."""
        target_id = _target_identity(target)
        with self._lock:
            bucket = self._targets.get(target_id)
            if not bucket or extension_identity not in bucket:
                return False
            del bucket[extension_identity]
            if not bucket:
                del self._targets[target_id]
            if not any(extension_identity in b for b in self._targets.values()):
                self._definitions.pop(extension_identity, None)
            self._bump()
            return True

    def _bump(self) -> None:
        # Caller holds self._lock
        self._version += 1
        self._snapshot = None

    def resolve(self, identity: str) -> Tuple[Phrase, ...]:
        """Direct extensions of `identity`, in fork order."""
        return self.snapshot().resolve(identity)

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            if self._snapshot is None:
                frozen = {
                    target_id: tuple(bucket[k] for k in sorted(bucket))
                    for target_id, bucket in self._targets.items()
                }
                self._snapshot = RegistrySnapshot(
                    version=self._version,
                    extensions=MappingProxyType(frozen),
                )
            return self._snapshot

    def __len__(self) -> int:
        with self._lock:
            return sum(len(b) for b in self._targets.values())
