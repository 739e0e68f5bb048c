"""
Snapshot models.
The immutable, content-addressed form of a profile as stored in the blob store.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from profile_sync.domain.models.identity import (
    Certificate,
    ImageRef,
    ProfileLinks,
    Project,
)


def canonical_json(payload: Any) -> bytes:
    """Deterministic JSON encoding: sorted keys, compact separators, UTF-8."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


class SnapshotProfile(BaseModel):
    """Profile section of a snapshot."""

    name: str = Field("", description="Display name")
    bio: Optional[str] = None
    role: Optional[str] = None
    links: ProfileLinks = Field(default_factory=ProfileLinks)
    avatar: Optional[ImageRef] = None


class Snapshot(BaseModel):
    """A fully assembled profile document."""

    profile: SnapshotProfile
    projects: List[Project] = Field(default_factory=list)
    certificates: List[Certificate] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        """JSON document of the snapshot. Local-only project flags never reach the published tier."""
        return self.model_dump(
            mode="json",
            exclude_none=True,
            exclude={"projects": {"__all__": {"pending_deletion"}}},
        )

    def to_canonical_bytes(self) -> bytes:
        """Serialize deterministically so equal snapshots hash to the same CID."""
        return canonical_json(self.to_payload())

    @classmethod
    def from_bytes(cls, data: bytes) -> "Snapshot":
        return cls.model_validate_json(data)
