from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator

from profile_sync.domain.models.sync import DiffResult, PullResult


# Request DTOs
class SignatureRequestDTO(BaseModel):
    """Request DTO for answering a pending transition."""

    signed_transaction: Optional[str] = Field(
        None, description="0x-prefixed signed raw transaction from the wallet"
    )
    rejected: bool = Field(False, description="True when the user refused to sign")

    @model_validator(mode="after")
    def check_answer(self) -> "SignatureRequestDTO":
        if self.rejected == bool(self.signed_transaction):
            raise ValueError("Provide either signed_transaction or rejected=true")
        return self


class RelinkRequestDTO(BaseModel):
    """Request DTO for linking an already uploaded snapshot."""

    orphan_cid: str = Field(..., min_length=1, description="Snapshot CID returned by a rejected publish")


# Response DTOs
class ImageUrlDTO(BaseModel):
    """Resolved image URLs."""

    name: str = Field(..., description="Image name inside the profile")
    url: str = Field(..., description="Best URL, or the placeholder")
    fallback_url: Optional[str] = Field(None, description="Next URL to try if the first fails")
    published: bool = Field(..., description="Image lives in the content-addressed tier")


class ProjectImagesDTO(BaseModel):
    """Resolved images of one project."""

    project_id: str
    project_name: str
    images: List[ImageUrlDTO] = Field(default_factory=list)


class ProfileImagesDTO(BaseModel):
    """Resolved images of a profile."""

    username: str
    avatar: ImageUrlDTO
    projects: List[ProjectImagesDTO] = Field(default_factory=list)


class SyncResponseDTO(BaseModel):
    """Response envelope for sync endpoints."""

    success: bool = Field(..., description="Operation success status")
    statusCode: int = Field(200, description="HTTP status code")
    message: str = Field(..., description="Response message")
    data: Optional[Any] = Field(None, description="Response payload")


class PullResponseDTO(SyncResponseDTO):
    data: Optional[PullResult] = None


class DiffResponseDTO(SyncResponseDTO):
    data: Optional[DiffResult] = None
