"""
Profile Router.
Public read path resolving where each profile image should be loaded from.
"""

from typing import Optional

from fastapi import APIRouter

from profile_sync.api.dto.sync_dto import (
    ImageUrlDTO,
    ProfileImagesDTO,
    ProjectImagesDTO,
    SyncResponseDTO,
)
from profile_sync.api.services.image_resolver import image_resolver
from profile_sync.api.services.reconciliation_service import AVATAR_IMAGE_NAME, image_name
from profile_sync.domain.models.identity import ImageRef
from profile_sync.domain.repositories.identity_repository import identity_repository

router = APIRouter()


def _image_url(name: str, ref: Optional[ImageRef]) -> ImageUrlDTO:
    candidates = image_resolver.candidate_urls(ref)
    return ImageUrlDTO(
        name=name,
        url=image_resolver.resolve_or_placeholder(ref),
        fallback_url=candidates[1] if len(candidates) > 1 else None,
        published=bool(ref and ref.is_published),
    )


@router.get("/{username}/images", response_model=SyncResponseDTO)
async def get_profile_images(username: str) -> SyncResponseDTO:
    """Resolved avatar and project image URLs, published tier first."""
    record = await identity_repository.get_identity_by_username(username)

    projects = [
        ProjectImagesDTO(
            project_id=project.id,
            project_name=project.name,
            images=[
                _image_url(image_name(project.id, index), image)
                for index, image in enumerate(project.images)
            ],
        )
        for project in record.projects
        if not project.pending_deletion
    ]
    data = ProfileImagesDTO(
        username=record.username,
        avatar=_image_url(AVATAR_IMAGE_NAME, record.avatar),
        projects=projects,
    )
    return SyncResponseDTO(success=True, message="Profile images resolved", data=data.model_dump())
