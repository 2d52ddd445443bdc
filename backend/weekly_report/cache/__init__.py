"""Dataset store: one opaque JSON document per user, plus the in-memory live copy."""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from ..config.settings import settings
from ..exceptions import PersistenceError
from ..models import TestDataset
from ..utils import clone_dataset, dumps_document

logger = logging.getLogger(__name__)


class DatasetStore:
    """Loads and saves a user's whole TestDataset as a single document."""

    def __init__(self, db: AsyncIOMotorDatabase, collection: str = settings.DATASET_COLLECTION):
        self.db = db
        self.collection = db[collection]

    async def load(self, user_id: str) -> Optional[TestDataset]:
        """
        Load the user's dataset.

        Returns None when nothing is stored or the stored document no longer
        matches the dataset shape. Raises PersistenceError if the database
        cannot be read.
        """
        try:
            doc = await self.collection.find_one({"user_id": user_id})
        except PyMongoError as e:
            logger.error(f"Loading dataset for {user_id} failed: {e}", exc_info=True)
            raise PersistenceError(f"Could not load saved reports: {e}")

        if not doc:
            return None

        try:
            return TestDataset.model_validate(json.loads(doc["payload"]))
        except (KeyError, TypeError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Stored dataset for {user_id} is unreadable, treating as empty: {e}")
            return None

    async def save(self, user_id: str, dataset: TestDataset) -> None:
        """Overwrite the user's document. Raises PersistenceError on failure."""
        doc = {
            "user_id": user_id,
            "payload": dumps_document(dataset),
            "updated_at": datetime.now(timezone.utc),
        }
        try:
            await self.collection.replace_one({"user_id": user_id}, doc, upsert=True)
        except PyMongoError as e:
            logger.error(f"Saving dataset for {user_id} failed: {e}", exc_info=True)
            raise PersistenceError(f"Could not save reports: {e}")
        logger.info(f"Saved dataset for {user_id}")


class DatasetRegistry:
    """
    Live in-memory datasets keyed by user.

    A user's dataset is loaded wholesale on first access. Writers work on a
    snapshot and swap it in with promote(); persisting happens afterwards
    and a failed save leaves the promoted state in place.
    """

    def __init__(self, store: DatasetStore):
        self.store = store
        self._live: Dict[str, TestDataset] = {}

    async def get(self, user_id: str) -> TestDataset:
        if user_id not in self._live:
            loaded = await self.store.load(user_id)
            # another request may have loaded it while we awaited
            self._live.setdefault(user_id, loaded or TestDataset())
        return self._live[user_id]

    async def snapshot(self, user_id: str) -> TestDataset:
        return clone_dataset(await self.get(user_id))

    def current(self, user_id: str) -> TestDataset:
        return self._live.setdefault(user_id, TestDataset())

    def promote(self, user_id: str, dataset: TestDataset) -> None:
        self._live[user_id] = dataset

    async def persist(self, user_id: str) -> None:
        await self.store.save(user_id, self.current(user_id))


# Global store/registry instances (initialized in main app)
_store_instance: Optional[DatasetStore] = None
_registry_instance: Optional[DatasetRegistry] = None


def init_store(db: AsyncIOMotorDatabase) -> DatasetRegistry:
    """Initialize global store and registry."""
    global _store_instance, _registry_instance
    _store_instance = DatasetStore(db)
    _registry_instance = DatasetRegistry(_store_instance)
    return _registry_instance


def get_registry() -> DatasetRegistry:
    """Get global registry instance."""
    if _registry_instance is None:
        raise RuntimeError("Dataset store not initialized. Call init_store() first.")
    return _registry_instance
