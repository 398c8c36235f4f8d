"""
ledgermirror/protocol/storage.py

Durable key/value storage for the read-model cache and the proposal ledger.

This is the only layer that touches disk. Two backends are provided:
1. Memory - volatile, used for tests and ephemeral processes
2. Local disk - survives restarts

NamespacedStore isolates callers by building keys as
"{domain}:{owner_context}:{key}", so several identities can share one
process without colliding.
"""

import json
import time
import logging
import hashlib
from pathlib import Path
from typing import Dict, List, Optional
from abc import ABC, abstractmethod

from ..config import DEFAULT_STORAGE_DIR

logger = logging.getLogger("ledgermirror.protocol.storage")


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes) -> bool:
        """Store a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory storage backend."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> bool:
        self._data[key] = bytes(value)
        return True

    async def delete(self, key: str) -> bool:
        if key in self._data:
            del self._data[key]
            return True
        return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)


class FileBackend(StorageBackend):
    """Local file storage backend."""

    def __init__(self, storage_dir: Path = None):
        self.storage_dir = Path(storage_dir) if storage_dir else DEFAULT_STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._metadata_file = self.storage_dir / "metadata.json"
        self._metadata: Dict[str, dict] = self._load_metadata()

    def _load_metadata(self) -> Dict[str, dict]:
        """Load the key index from disk."""
        if self._metadata_file.exists():
            try:
                with open(self._metadata_file, "r") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.warning("Ignoring malformed metadata index")
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load metadata: {e}")
        return {}

    def _save_metadata(self) -> None:
        """Write the key index atomically."""
        tmp = self._metadata_file.with_suffix(".tmp")
        try:
            with open(tmp, "w") as f:
                json.dump(self._metadata, f)
            tmp.replace(self._metadata_file)
        except OSError as e:
            logger.error(f"Failed to save metadata: {e}")

    def _key_to_path(self, key: str) -> Path:
        """Convert key to file path."""
        # Hash keeps arbitrary key characters out of the filesystem
        hash_name = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.storage_dir / f"{hash_name}.dat"

    async def get(self, key: str) -> Optional[bytes]:
        if key not in self._metadata:
            return None

        path = self._key_to_path(key)
        if path.exists():
            try:
                return path.read_bytes()
            except OSError as e:
                logger.error(f"Failed to read {key}: {e}")
        return None

    async def set(self, key: str, value: bytes) -> bool:
        path = self._key_to_path(key)
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_bytes(value)
            tmp.replace(path)
            self._metadata[key] = {
                "path": path.name,
                "updated_at": time.time(),
                "size": len(value),
            }
            self._save_metadata()
            return True
        except OSError as e:
            logger.error(f"Failed to write {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        if key not in self._metadata:
            return False

        path = self._key_to_path(key)
        try:
            if path.exists():
                path.unlink()
            del self._metadata[key]
            self._save_metadata()
            return True
        except OSError as e:
            logger.error(f"Failed to delete {key}: {e}")
            return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._metadata if key.startswith(prefix)]


# ============================================================================
# NAMESPACED STORE
# ============================================================================

class NamespacedStore:
    """
    View of a backend scoped to one domain and owner context.

    Keys are stored as "{domain}:{owner_context}:{key}".
    """

    def __init__(self, backend: StorageBackend, domain: str, owner: str):
        """
        Args:
            backend: Underlying storage backend
            domain: Component using the store (e.g. "cache", "governance")
            owner: Identity whose data this is
        """
        self.backend = backend
        self.domain = domain
        self.owner = owner

    def _make_key(self, key: str) -> str:
        """Create namespaced key."""
        return f"{self.domain}:{self.owner}:{key}"

    @property
    def prefix(self) -> str:
        return self._make_key("")

    async def get(self, key: str) -> Optional[bytes]:
        return await self.backend.get(self._make_key(key))

    async def set(self, key: str, value: bytes) -> bool:
        return await self.backend.set(self._make_key(key), value)

    async def delete(self, key: str) -> bool:
        return await self.backend.delete(self._make_key(key))

    async def list_keys(self) -> List[str]:
        """List keys in this namespace, without the namespace prefix."""
        prefix = self.prefix
        keys = await self.backend.list_keys(prefix)
        return sorted(k[len(prefix):] for k in keys)

    async def get_json(self, key: str):
        """Get and decode a JSON value; raises ValueError on bad data."""
        data = await self.get(key)
        if data is None:
            return None
        return json.loads(data.decode())

    async def set_json(self, key: str, value) -> bool:
        return await self.set(key, json.dumps(value).encode())
