"""
Atlas plumbing shared by the workflow repositories.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from pymongo import MongoClient

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Counts from a single-document update, detached from pymongo."""
    matched_count: int
    modified_count: int
    upserted_id: Optional[str] = None


def to_write_result(result) -> WriteResult:
    upserted = result.upserted_id
    return WriteResult(
        matched_count=result.matched_count,
        modified_count=result.modified_count,
        upserted_id=str(upserted) if upserted is not None else None,
    )


class AtlasCollectionMixin:
    """
    Gives a repository one collection in the configured database.

    All repositories share a single MongoClient, opened on the first query
    rather than at construction so that building the engine never touches
    the network. Subclasses set ``_collection_name``; ``_get_collection``
    takes another name for side collections such as the owner locks.
    """

    _client: Optional[MongoClient] = None
    _collection_name: str = ""

    def _init_atlas(self, mongodb_uri: Optional[str], database: str) -> None:
        self._mongodb_uri = mongodb_uri or os.getenv("MONGODB_URI")
        if not self._mongodb_uri:
            raise ValueError("MongoDB URI is required (pass mongodb_uri or set MONGODB_URI)")
        self._database = database

    def _get_collection(self, name: Optional[str] = None):
        if AtlasCollectionMixin._client is None:
            AtlasCollectionMixin._client = MongoClient(self._mongodb_uri)
            logger.info(f"Opened MongoDB client for database '{self._database}'")
        return AtlasCollectionMixin._client[self._database][name or self._collection_name]

    @classmethod
    def reset_connection(cls) -> None:
        client, AtlasCollectionMixin._client = AtlasCollectionMixin._client, None
        if client is not None:
            client.close()
            logger.info("Closed shared MongoDB client")
