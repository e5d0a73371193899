"""
MongoDB connection and index setup.

`db` is None when DATABASE_URL / DATABASE_NAME are not set, so the API can
still boot (and report it on /test) without a database.
"""

import os
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(
        DATABASE_URL,
        serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS,
        connectTimeoutMS=DATABASE_TIMEOUT_MS,
        socketTimeoutMS=DATABASE_TIMEOUT_MS,
    )
    db = _client[DATABASE_NAME]


def ensure_indexes(database: Optional[Database] = None) -> None:
    # Webhook redeliveries rely on this to stay idempotent across handler instances
    target = database if database is not None else db
    if target is None:
        return
    target["order"].create_index([("stripe_session_id", ASCENDING)], unique=True)
    target["order"].create_index([("created_at", ASCENDING)])
