"""
Identity record models.
The mutable tier of a profile: identity, links, projects, certificates and image references.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, Field, field_validator, model_validator


class ImageAddressing(str, Enum):
    """Addressing modes for an image, highest resolution priority first."""

    DIRECT = "direct"
    BATCH = "batch"
    LOCAL = "local"


class ImageRef(BaseModel):
    """Reference to one image in whichever storage tier holds it."""

    direct_cid: Optional[str] = Field(None, description="CID of a standalone blob")
    batch_id: Optional[str] = Field(None, description="CID of the batch holding this image")
    patch_id: Optional[str] = Field(None, description="Item reference inside the batch")
    local_filename: Optional[str] = Field(None, description="Filename in local media storage")
    size: Optional[int] = Field(None, description="Size in bytes")
    format: Optional[str] = Field(None, description="Image format, e.g. png")
    index: Optional[int] = Field(None, description="Position in the owning project's gallery")

    @model_validator(mode="after")
    def check_addressing(self) -> "ImageRef":
        if (self.batch_id is None) != (self.patch_id is None):
            raise ValueError("batch_id and patch_id must be set together")
        if not (self.direct_cid or self.batch_id or self.local_filename):
            raise ValueError("image reference needs at least one addressing mode")
        return self

    @property
    def addressing_modes(self) -> List[ImageAddressing]:
        """Available addressing modes in resolution priority order."""
        modes = []
        if self.direct_cid:
            modes.append(ImageAddressing.DIRECT)
        if self.batch_id and self.patch_id:
            modes.append(ImageAddressing.BATCH)
        if self.local_filename:
            modes.append(ImageAddressing.LOCAL)
        return modes

    @property
    def is_published(self) -> bool:
        """True when the image already lives in the content-addressed tier."""
        return bool(self.direct_cid or (self.batch_id and self.patch_id))


class ProjectStatus(str, Enum):
    """Lifecycle status of a project."""

    ACTIVE = "active"
    COMPLETED = "completed"
    IN_PROGRESS = "in-progress"


class ProjectLinks(BaseModel):
    """External links of a project."""

    repo_url: Optional[str] = Field(None, description="Source repository URL")
    demo_url: Optional[str] = Field(None, description="Live demo URL")


class Project(BaseModel):
    """A project shown on the profile."""

    id: str = Field(..., description="Stable project ID assigned at creation")
    name: str = Field(..., description="Project name")
    description: str = Field("", description="Project description")
    links: ProjectLinks = Field(default_factory=ProjectLinks)
    images: List[ImageRef] = Field(default_factory=list, description="Project gallery")
    batch_id: Optional[str] = Field(None, description="Batch CID holding this project's images")
    tags: List[str] = Field(default_factory=list)
    status: ProjectStatus = Field(default=ProjectStatus.ACTIVE)
    featured: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Local-only: exclude from the next published snapshot
    pending_deletion: Optional[bool] = Field(
        None, description="Marked for removal from the published tier"
    )


class Certificate(BaseModel):
    """Certificate information."""

    name: str = Field(..., description="Certificate name")
    issuer: Optional[str] = Field(None, description="Issuing organisation")
    date: Optional[str] = Field(None, description="Issue date")
    url: Optional[str] = Field(None, description="Verification URL")


class ProfileLinks(BaseModel):
    """Social and personal links on the profile."""

    github: Optional[str] = None
    linkedin: Optional[str] = None
    telegram: Optional[str] = None
    website: Optional[str] = None


class IdentityRecord(BaseModel):
    """MongoDB model for the mutable identity record."""

    id: str = Field(..., alias="_id", description="Record ID")
    username: str = Field(..., description="Unique username")

    # Display fields
    name: str = Field("", description="Display name")
    bio: Optional[str] = Field(None, description="Short biography")
    role: Optional[str] = Field(None, description="Level or role")
    links: ProfileLinks = Field(default_factory=ProfileLinks)
    avatar: Optional[ImageRef] = Field(None, description="Avatar image")

    projects: List[Project] = Field(default_factory=list)
    certificates: List[Certificate] = Field(default_factory=list)

    # Published tier binding
    snapshot_cid: Optional[str] = Field(None, description="CID of the last confirmed snapshot")
    pointer_handle: Optional[str] = Field(None, description="Registry handle of this identity")
    wallet_address: Optional[str] = Field(None, description="Bound signing wallet")

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("id", mode="before")
    @classmethod
    def convert_objectid_to_str(cls, v):
        """Convert MongoDB ObjectId to string."""
        if isinstance(v, ObjectId):
            return str(v)
        return v

    @property
    def is_published(self) -> bool:
        return bool(self.snapshot_cid and self.pointer_handle)

    class Config:
        populate_by_name = True
