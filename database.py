"""
Database helpers for the Restaurant Ordering API

A thin wrapper over a pymongo database. Documents are addressed by string ids
(generated ObjectId hex for store-assigned ids, or caller-chosen such as the
identity-provider uid for `utilisateurs`).
"""

import os
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "restaurants")

# Collections
UTILISATEURS = "utilisateurs"
RESTAURANTS = "restaurants"
MENUS = "menus"
COMMANDES = "commandes"
COMPTES = "comptes"


def to_dict(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


class DocumentStore:
    """Collection store supporting equality filters, ordering, get/add/update."""

    def __init__(self, db: Database):
        self.db = db

    def collection(self, name: str):
        return self.db[name]

    def create_document(self, collection_name: str, data: Dict[str, Any]) -> str:
        """Insert a document under a fresh id and return that id."""
        doc = dict(data)
        doc["_id"] = str(ObjectId())
        self.db[collection_name].insert_one(doc)
        return doc["_id"]

    def set_document(self, collection_name: str, doc_id: str, data: Dict[str, Any]) -> None:
        """Insert a document under a caller-chosen id."""
        doc = dict(data)
        doc["_id"] = doc_id
        self.db[collection_name].insert_one(doc)

    def get_document(self, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return to_dict(self.db[collection_name].find_one({"_id": doc_id}))

    def update_document(self, collection_name: str, doc_id: str, fields: Dict[str, Any]) -> bool:
        """Field-level update. Returns False when no document has that id."""
        res = self.db[collection_name].update_one({"_id": doc_id}, {"$set": fields})
        return res.matched_count > 0

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if order_by:
            cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
        return [to_dict(doc) for doc in cursor]


_store: Optional[DocumentStore] = None


def init_store(database_url: Optional[str] = None, database_name: Optional[str] = None) -> Optional[DocumentStore]:
    """Create the process-wide store. Called once from the app lifespan."""
    global _store
    url = database_url or DATABASE_URL
    if not url:
        logger.warning("DATABASE_URL not set, document store disabled")
        _store = None
        return None
    client = MongoClient(url)
    _store = DocumentStore(client[database_name or DATABASE_NAME])
    logger.info("Document store ready on database %s", database_name or DATABASE_NAME)
    return _store


def get_store() -> DocumentStore:
    if _store is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return _store


def current_store() -> Optional[DocumentStore]:
    """The configured store, or None. For diagnostics only."""
    return _store
