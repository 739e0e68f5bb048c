"""
Pure reconciliation rules between an identity record and a published snapshot.

assemble -> what the next publish would upload
diff     -> whether a publish is needed
merge    -> what a pull (or a confirmed publish) writes back into the record
"""

from typing import Any, Dict, List, Optional, Set

from profile_sync.domain.models.identity import IdentityRecord, ImageRef, Project
from profile_sync.domain.models.snapshot import Snapshot, SnapshotProfile

PROFILE_SCALAR_FIELDS = ("name", "bio", "role")
PROFILE_LINK_FIELDS = ("github", "linkedin", "telegram", "website")


def assemble_snapshot(record: IdentityRecord) -> Snapshot:
    """Build the snapshot for a record, leaving out projects marked for deletion."""
    projects = [
        project.model_copy(update={"pending_deletion": None}, deep=True)
        for project in record.projects
        if not project.pending_deletion
    ]
    return Snapshot(
        profile=SnapshotProfile(
            name=record.name,
            bio=record.bio,
            role=record.role,
            links=record.links.model_copy(),
            avatar=record.avatar.model_copy() if record.avatar else None,
        ),
        projects=projects,
        certificates=[cert.model_copy() for cert in record.certificates],
    )


def _norm(value: Optional[str]) -> str:
    return value or ""


def diff_snapshot(record: IdentityRecord, snapshot: Snapshot) -> bool:
    """
    Return True when the record differs from the snapshot.

    The avatar is excluded because its encoding differs between tiers. Images
    are compared by count only since their addressing differs structurally.
    """
    for field in PROFILE_SCALAR_FIELDS:
        if _norm(getattr(record, field)) != _norm(getattr(snapshot.profile, field)):
            return True
    for field in PROFILE_LINK_FIELDS:
        if _norm(getattr(record.links, field)) != _norm(getattr(snapshot.profile.links, field)):
            return True

    if [c.model_dump() for c in record.certificates] != [
        c.model_dump() for c in snapshot.certificates
    ]:
        return True

    if any(project.pending_deletion for project in record.projects):
        return True
    if len(record.projects) != len(snapshot.projects):
        return True

    for local, remote in zip(record.projects, snapshot.projects):
        if local.name != remote.name:
            return True
        if _norm(local.description) != _norm(remote.description):
            return True
        if list(local.tags) != list(remote.tags):
            return True
        if len(local.images) != len(remote.images):
            return True

    return False


def merge_projects(local: List[Project], remote: List[Project]) -> List[Project]:
    """
    Union of remote and local projects.

    Remote projects win on content but keep the local pending_deletion flag
    (matched by id). Local projects missing from the remote list have not been
    published yet and are kept unchanged after the remote ones.
    """
    local_by_id = {project.id: project for project in local}
    remote_ids: Set[str] = set()
    merged: List[Project] = []

    for remote_project in remote:
        remote_ids.add(remote_project.id)
        local_project = local_by_id.get(remote_project.id)
        pending = True if local_project is not None and local_project.pending_deletion else None
        merged.append(remote_project.model_copy(update={"pending_deletion": pending}, deep=True))

    for local_project in local:
        if local_project.id not in remote_ids:
            merged.append(local_project.model_copy(deep=True))

    return merged


def merge_pulled_snapshot(record: IdentityRecord, snapshot: Snapshot) -> IdentityRecord:
    """Overwrite record fields from a snapshot, preserving local-only deletion intent."""
    return record.model_copy(
        update={
            "name": snapshot.profile.name,
            "bio": snapshot.profile.bio,
            "role": snapshot.profile.role,
            "links": snapshot.profile.links.model_copy(),
            "avatar": snapshot.profile.avatar.model_copy() if snapshot.profile.avatar else None,
            "projects": merge_projects(record.projects, snapshot.projects),
            "certificates": [cert.model_copy() for cert in snapshot.certificates],
        },
        deep=True,
    )


def record_fields(record: IdentityRecord) -> Dict[str, Any]:
    """Profile, project and certificate fields of a record as storable documents."""
    return {
        "name": record.name,
        "bio": record.bio,
        "role": record.role,
        "links": record.links.model_dump(mode="json"),
        "avatar": record.avatar.model_dump(mode="json", exclude_none=True) if record.avatar else None,
        "projects": [
            project.model_dump(mode="json", exclude_none=True) for project in record.projects
        ],
        "certificates": [cert.model_dump(mode="json") for cert in record.certificates],
    }


def _local_only(image: Optional[ImageRef]) -> Optional[ImageRef]:
    if image is None or not image.local_filename:
        return None
    return ImageRef(
        local_filename=image.local_filename,
        size=image.size,
        format=image.format,
        index=image.index,
    )


def strip_published_addressing(record: IdentityRecord) -> IdentityRecord:
    """
    Remove every reference into the published tier from a record.

    Images that only ever lived in the published tier are dropped. The blobs
    themselves stay in the store; only the links are removed.
    """
    projects = []
    for project in record.projects:
        images = [img for img in (_local_only(image) for image in project.images) if img]
        projects.append(project.model_copy(update={"images": images, "batch_id": None}, deep=True))
    return record.model_copy(
        update={
            "projects": projects,
            "avatar": _local_only(record.avatar),
            "snapshot_cid": None,
            "pointer_handle": None,
            "wallet_address": None,
        },
        deep=True,
    )
