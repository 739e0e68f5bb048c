"""
Identity Repository for MongoDB operations.
Reads and updates the mutable identity record.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from profile_sync.core.config import settings
from profile_sync.core.exceptions import (
    AuthorizationError,
    IdentityNotFoundError,
    RecordWriteFailedError,
    StoreUnavailableError,
)
from profile_sync.core.logging import get_logger
from profile_sync.domain.models.identity import IdentityRecord

logger = get_logger(__name__)


def _id_filter(identity_id: str) -> Dict[str, Union[ObjectId, str]]:
    if ObjectId.is_valid(identity_id):
        return {"_id": ObjectId(identity_id)}
    return {"_id": identity_id}


class IdentityRepository:
    """Repository for identity record operations."""

    def __init__(self):
        """Initialize identity repository."""
        self.client: Optional[AsyncIOMotorClient] = None
        self.db = None
        self.collection = None

    async def connect(self):
        """Connect to MongoDB."""
        if not self.client:
            self.client = AsyncIOMotorClient(settings.MONGO_URI)
            self.db = self.client[settings.MONGO_DB_NAME]
            self.collection = self.db[settings.IDENTITY_COLLECTION]
            logger.info("Connected to MongoDB identities collection")

    async def disconnect(self):
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            self.client = None
            logger.info("Disconnected from MongoDB")

    async def _find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            return await self.collection.find_one(query)
        except PyMongoError as e:
            logger.error(f"Error reading identity {query}: {e}")
            raise StoreUnavailableError("Record store unavailable", {"error": str(e)}) from e

    async def get_identity(self, identity_id: str) -> IdentityRecord:
        """
        Get identity record by ID.

        Args:
            identity_id: Record ID (ObjectId hex or plain string)

        Returns:
            IdentityRecord

        Raises:
            IdentityNotFoundError: If no record has this ID
        """
        await self.connect()

        document = await self._find_one(_id_filter(identity_id))
        if not document:
            raise IdentityNotFoundError(identity_id)
        return IdentityRecord.model_validate(document)

    async def get_identity_by_username(self, username: str) -> IdentityRecord:
        """Get identity record by its unique username."""
        await self.connect()

        document = await self._find_one({"username": username})
        if not document:
            raise IdentityNotFoundError(username)
        return IdentityRecord.model_validate(document)

    async def update_identity(
        self,
        identity_id: str,
        fields: Dict[str, Any],
        acting_wallet: Optional[str] = None,
    ) -> None:
        """
        Update fields of an identity record.

        Args:
            identity_id: Record ID
            fields: Fields to set
            acting_wallet: When given, only the record bound to this wallet may be updated

        Raises:
            IdentityNotFoundError: If the record does not exist
            AuthorizationError: If acting_wallet does not own the record
            RecordWriteFailedError: If MongoDB fails the write
        """
        await self.connect()

        query: Dict[str, Any] = _id_filter(identity_id)
        if acting_wallet:
            query["wallet_address"] = {
                "$regex": f"^{re.escape(acting_wallet)}$",
                "$options": "i",
            }

        update = dict(fields)
        update["updated_at"] = datetime.now(timezone.utc)

        try:
            result = await self.collection.update_one(query, {"$set": update})
            if result.matched_count:
                logger.info(f"Updated identity {identity_id}: {sorted(fields)}")
                return
            exists = await self.collection.count_documents(_id_filter(identity_id), limit=1)
        except PyMongoError as e:
            logger.error(f"Error updating identity {identity_id}: {e}")
            raise RecordWriteFailedError(identity_id, {"error": str(e)}) from e

        if not exists:
            raise IdentityNotFoundError(identity_id)
        raise AuthorizationError(
            "Only the bound wallet may update this identity",
            {"identity_id": identity_id},
        )


# Global repository instance
identity_repository = IdentityRepository()
