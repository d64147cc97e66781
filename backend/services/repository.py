"""
Workflow Hub - Workflow Record Repository

Persistence interface used by the workflow engine, with two implementations:

- MongoRepository: one MongoDB collection per workflow (motor, async)
- InMemoryRepository: dict-backed store for development and tests

Records are plain dicts with a unique "id" field. `kind` below is the
workflow name ("disputes", "orders") and selects the collection.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

COLLECTION_PREFIX = "workflow_"


class RecordNotFound(Exception):
    """update_where matched no record."""


class Repository:
    """Interface for the record store."""

    async def insert(self, kind: str, record: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def update_where(self, kind: str, match_field: str, match_value: Any, patch: Dict[str, Any]):
        raise NotImplementedError

    async def find_where(self, kind: str, predicate: Dict[str, Any], limit: int = 500) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def find_by_id(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


# =============================================================================
# MONGODB
# =============================================================================

class MongoRepository(Repository):
    """
    Motor-backed repository.

    Usage:
        client = AsyncIOMotorClient(MONGO_URL)
        repository = MongoRepository(client[DB_NAME])
    """

    def __init__(self, db):
        self.db = db

    def collection(self, kind: str):
        return self.db[f"{COLLECTION_PREFIX}{kind}"]

    async def create_indexes(self, kinds: List[str]):
        for kind in kinds:
            collection = self.collection(kind)
            await collection.create_index("id", unique=True)
            await collection.create_index("status")
            await collection.create_index("assigned_to")
            await collection.create_index("kind")
            await collection.create_index("created_at")
        logger.info("Workflow indexes created for %s", ", ".join(kinds))

    async def insert(self, kind: str, record: Dict[str, Any]) -> str:
        document = copy.deepcopy(record)
        await self.collection(kind).insert_one(document)
        return record["id"]

    async def update_where(self, kind: str, match_field: str, match_value: Any, patch: Dict[str, Any]):
        result = await self.collection(kind).update_one(
            {match_field: match_value},
            {"$set": copy.deepcopy(patch)}
        )
        if result.matched_count == 0:
            raise RecordNotFound(f"No {kind} record with {match_field}={match_value}")

    async def find_where(self, kind: str, predicate: Dict[str, Any], limit: int = 500) -> List[Dict[str, Any]]:
        cursor = self.collection(kind).find(predicate, {"_id": 0}).sort("created_at", -1).limit(limit)
        return await cursor.to_list(limit)

    async def find_by_id(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection(kind).find_one({"id": record_id}, {"_id": 0})


# =============================================================================
# IN-MEMORY
# =============================================================================

def _lookup(record: Dict[str, Any], dotted_key: str) -> Any:
    value: Any = record
    for part in dotted_key.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class InMemoryRepository(Repository):
    """
    Dict-backed repository with the same observable behavior as MongoRepository
    for equality predicates (dotted keys supported). Records are deep-copied
    on the way in and out.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _collection(self, kind: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(kind, {})

    async def insert(self, kind: str, record: Dict[str, Any]) -> str:
        collection = self._collection(kind)
        if record["id"] in collection:
            raise ValueError(f"Duplicate {kind} id: {record['id']}")
        collection[record["id"]] = copy.deepcopy(record)
        return record["id"]

    async def update_where(self, kind: str, match_field: str, match_value: Any, patch: Dict[str, Any]):
        matched = [r for r in self._collection(kind).values() if _lookup(r, match_field) == match_value]
        if not matched:
            raise RecordNotFound(f"No {kind} record with {match_field}={match_value}")
        for record in matched:
            record.update(copy.deepcopy(patch))

    async def find_where(self, kind: str, predicate: Dict[str, Any], limit: int = 500) -> List[Dict[str, Any]]:
        records = [
            copy.deepcopy(r) for r in self._collection(kind).values()
            if all(_lookup(r, key) == value for key, value in predicate.items())
        ]
        records.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return records[:limit]

    async def find_by_id(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._collection(kind).get(record_id)
        return copy.deepcopy(record) if record is not None else None
