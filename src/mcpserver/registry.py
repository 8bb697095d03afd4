"""
Capability Registry for the MCP server.

One Registry holds one namespace of definitions (tools, resources or
prompts). Reads are far more frequent than writes, so the registry is
copy-on-write: writers copy the table under a lock and swap the reference,
readers use whatever table is current without locking.
"""

import threading
from typing import Dict, Generic, List, Optional, TypeVar

from common.config import DuplicatePolicy
from common.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class DuplicateNameError(ValueError):
    """A definition with the same name is already registered."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind.capitalize()} '{name}' is already registered")


class Registry(Generic[T]):
    """
    Named definitions of one kind with add/get/remove/list.

    Definitions must expose a `key` property (name, or URI for resources).
    """

    def __init__(self, kind: str, duplicate_policy: DuplicatePolicy = DuplicatePolicy.OVERWRITE):
        self.kind = kind
        self.duplicate_policy = DuplicatePolicy(duplicate_policy)
        self._entries: Dict[str, T] = {}
        self._write_lock = threading.Lock()

    def register(self, definition: T) -> bool:
        """
        Store a definition under its key.

        Returns:
            True if an existing entry was replaced

        Raises:
            DuplicateNameError: the key exists and the policy is REJECT
        """
        key = definition.key  # type: ignore[attr-defined]
        with self._write_lock:
            replaced = key in self._entries
            if replaced and self.duplicate_policy == DuplicatePolicy.REJECT:
                raise DuplicateNameError(self.kind, key)

            entries = dict(self._entries)
            entries[key] = definition
            self._entries = entries

        logger.info(event=f"{self.kind}_registered", key=key, replaced=replaced)
        return replaced

    def get(self, key: str) -> Optional[T]:
        return self._entries.get(key)

    def remove(self, key: str) -> bool:
        """Delete an entry; no-op when absent."""
        with self._write_lock:
            if key not in self._entries:
                return False
            entries = dict(self._entries)
            del entries[key]
            self._entries = entries

        logger.info(event=f"{self.kind}_removed", key=key)
        return True

    def clear(self) -> None:
        with self._write_lock:
            self._entries = {}

    def list(self) -> List[T]:
        """All definitions in insertion order."""
        return list(self._entries.values())

    def names(self) -> List[str]:
        return list(self._entries.keys())

    def has(self, key: str) -> bool:
        return key in self._entries

    def count(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
