"""Chunk model for davsync.

A chunk is one versioned, checksummed record stored as a single remote
JSON file. This module provides:
- ChunkMetadata, ChunkData, ChunkIndex: the persisted structures
- ChunkDiff, VersionMismatch: result of comparing local and remote sets
- serialize_payload / compute_checksum: canonical encoding and hashing
- now_ms, generate_device_id: timestamp and device helpers
"""

from __future__ import annotations

import hashlib
import json
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def generate_device_id() -> str:
    """Generate an identifier for this device.

    Format: ``<millis>-<random>``, stable once persisted by the caller.
    """
    return f"{now_ms()}-{secrets.token_hex(6)}"


def serialize_payload(data: Any) -> str:
    """Serialize a payload to its canonical JSON form.

    Keys are sorted and separators compact, so the same value always hashes
    to the same checksum regardless of which device wrote it.

    Raises:
        TypeError: If the payload is not JSON-serializable.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_checksum(serialized: str) -> str:
    """Compute the SHA-256 hex digest of a serialized payload."""
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def payload_size(serialized: str) -> int:
    """Byte length of a serialized payload."""
    return len(serialized.encode("utf-8"))


@dataclass
class ChunkMetadata:
    """Metadata of one chunk, as stored in the index and in the chunk file."""

    id: str
    version: int
    checksum: str
    created_at: int
    updated_at: int
    size: int
    data_type: str
    device_id: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChunkMetadata:
        """Create from the wire representation."""
        return cls(
            id=data["id"],
            version=int(data["version"]),
            checksum=data["checksum"],
            created_at=int(data["createdAt"]),
            updated_at=int(data["updatedAt"]),
            size=int(data["size"]),
            data_type=data.get("dataType", "unknown"),
            device_id=data.get("deviceId", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        return {
            "id": self.id,
            "version": self.version,
            "checksum": self.checksum,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "size": self.size,
            "dataType": self.data_type,
            "deviceId": self.device_id,
        }


@dataclass
class ChunkData(Generic[T]):
    """A chunk's metadata paired with its payload."""

    meta: ChunkMetadata
    data: T

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ChunkData[Any]:
        """Create from a decoded chunk file."""
        return cls(meta=ChunkMetadata.from_dict(raw["meta"]), data=raw["data"])

    def to_dict(self) -> dict[str, Any]:
        """Convert to the chunk file representation."""
        return {"meta": self.meta.to_dict(), "data": self.data}


@dataclass
class ChunkIndex:
    """Remote directory of every chunk that exists."""

    chunks: dict[str, ChunkMetadata] = field(default_factory=dict)
    last_updated: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ChunkIndex:
        """Create from the decoded index file."""
        return cls(
            chunks={
                chunk_id: ChunkMetadata.from_dict(meta)
                for chunk_id, meta in raw.get("chunks", {}).items()
            },
            last_updated=int(raw.get("lastUpdated", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the index file representation."""
        return {
            "chunks": {chunk_id: meta.to_dict() for chunk_id, meta in self.chunks.items()},
            "lastUpdated": self.last_updated,
        }


@dataclass
class VersionMismatch:
    """A chunk present on both sides with differing versions."""

    id: str
    local_version: int
    remote_version: int
    local_updated_at: int | None = None
    remote_updated_at: int | None = None


@dataclass
class ChunkDiff:
    """Three-way partition of chunk ids between local and remote.

    Ids whose versions match on both sides appear in none of the lists.
    """

    local_only: list[str] = field(default_factory=list)
    remote_only: list[str] = field(default_factory=list)
    version_mismatch: list[VersionMismatch] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """Check if both sides already agree."""
        return not (self.local_only or self.remote_only or self.version_mismatch)

    @property
    def total(self) -> int:
        """Number of ids that need some action."""
        return len(self.local_only) + len(self.remote_only) + len(self.version_mismatch)
