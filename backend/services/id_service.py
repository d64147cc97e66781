"""
Workflow Hub - ID Service

Issues sequential, human-readable ids per workflow ("DSP-000042").
The workflow service falls back to a timestamp-derived id when the issuer
is unavailable, so issuers are free to raise.
"""

import itertools
import logging
from typing import Dict

from pymongo import ReturnDocument

logger = logging.getLogger(__name__)

COUNTERS_COLLECTION = "workflow_counters"


def format_id(prefix: str, sequence: int) -> str:
    return f"{prefix}-{sequence:06d}"


class IdIssuer:
    """Interface: next(kind) -> unique id string."""

    async def next(self, kind: str) -> str:
        raise NotImplementedError


class MongoIdIssuer(IdIssuer):
    """Atomic per-workflow counters in MongoDB."""

    def __init__(self, db, prefixes: Dict[str, str]):
        self.db = db
        self.prefixes = prefixes

    async def next(self, kind: str) -> str:
        counter = await self.db[COUNTERS_COLLECTION].find_one_and_update(
            {"_id": kind},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        next_id = format_id(self.prefixes.get(kind, kind.upper()), counter["seq"])
        logger.debug("Issued id %s for %s", next_id, kind)
        return next_id


class SequenceIdIssuer(IdIssuer):
    """In-process counters, for development and tests."""

    def __init__(self, prefixes: Dict[str, str]):
        self.prefixes = prefixes
        self._counters: Dict[str, itertools.count] = {}

    async def next(self, kind: str) -> str:
        counter = self._counters.setdefault(kind, itertools.count(1))
        return format_id(self.prefixes.get(kind, kind.upper()), next(counter))
