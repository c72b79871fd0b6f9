"""Database utilities for the grouping backend.

This module centralizes the MongoDB connection and exposes the roster
provider, the grouping persistence sink and the historical metrics store
used by the engines.
"""
from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Dict, List, Optional

import certifi
from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from models import EnrollmentRecord, GroupingResult, GroupPerformanceData, PersistedGroup, ValidationReport

log = logging.getLogger("db")

load_dotenv()

_client_lock: Lock = Lock()
_client: Optional[MongoClient] = None
_db_name: str = os.getenv("MONGO_DB_NAME", "biolearn")
_enrollments_col: Optional[Collection] = None
_groups_col: Optional[Collection] = None
_groupings_col: Optional[Collection] = None
_metrics_col: Optional[Collection] = None

METRICS_PERIOD = timedelta(days=7)


def init_db() -> None:
    """Initialize the MongoDB client, collections and indexes."""
    global _client, _enrollments_col, _groups_col, _groupings_col, _metrics_col

    if _client is not None:
        return

    mongo_uri = os.getenv("MONGO_URI")
    if not mongo_uri:
        raise RuntimeError("MONGO_URI environment variable is not defined.")

    with _client_lock:
        if _client is not None:
            return
        try:
            client = MongoClient(
                mongo_uri,
                serverSelectionTimeoutMS=10000,
                tlsCAFile=certifi.where(),
            )
            # Force connection (raises if credentials/URI invalid)
            client.admin.command("ping")
        except PyMongoError as exc:
            raise RuntimeError(f"Failed to connect to MongoDB: {exc}") from exc

        db = client[_db_name]
        enrollments_col = db["enrollments"]
        groups_col = db["groups"]
        groupings_col = db["groupings"]
        metrics_col = db["group_performance_metrics"]

        enrollments_col.create_index([("class_id", ASCENDING), ("student_id", ASCENDING)], unique=True)
        groups_col.create_index("id", unique=True)
        groups_col.create_index("class_id")
        groupings_col.create_index("id", unique=True)
        groupings_col.create_index([("class_id", ASCENDING), ("created_at", DESCENDING)])
        metrics_col.create_index([("class_id", ASCENDING), ("group_id", ASCENDING)])

        _client = client
        _enrollments_col = enrollments_col
        _groups_col = groups_col
        _groupings_col = groupings_col
        _metrics_col = metrics_col


def _ensure_initialized() -> None:
    if _client is None:
        init_db()


def _sanitize(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if document is None:
        return None
    sanitized = dict(document)
    sanitized.pop("_id", None)
    return sanitized


# ---------------------- Roster ----------------------

def list_roster(class_id: str) -> List[EnrollmentRecord]:
    """Enrolled students of a class with their scores."""
    _ensure_initialized()
    if _enrollments_col is None:
        return []
    docs = _enrollments_col.find({"class_id": class_id}, {"_id": 0}).sort("name", ASCENDING)
    return [EnrollmentRecord(**doc) for doc in docs]


# ---------------------- Groups ----------------------

def list_groups(class_id: str) -> List[PersistedGroup]:
    _ensure_initialized()
    if _groups_col is None:
        return []
    docs = _groups_col.find({"class_id": class_id}, {"_id": 0}).sort("created_at", ASCENDING)
    return [PersistedGroup(**doc) for doc in docs]


def apply_grouping(class_id: str, result: GroupingResult, ai_generated: bool, rationale: str) -> List[Dict[str, Any]]:
    """Replace the class's groups with ``result`` and annotate enrollments.

    Destructive overwrite: concurrent applies for one class are not
    serialized, the last write wins.
    """
    _ensure_initialized()
    if _groups_col is None or _enrollments_col is None:
        raise RuntimeError("Groups collection is not available")

    _groups_col.delete_many({"class_id": class_id})
    _enrollments_col.update_many(
        {"class_id": class_id},
        {"$set": {"group_number": None, "grouping_rationale": None}},
    )

    created = []
    now = datetime.now()
    for number, group in enumerate(result.groups, start=1):
        group_rationale = group.rationale or rationale
        doc = {
            "id": str(uuid.uuid4()),
            "class_id": class_id,
            "name": group.name,
            "member_ids": list(group.student_ids),
            "ai_generated": ai_generated,
            "rationale": group_rationale,
            "created_at": now,
        }
        _groups_col.insert_one(doc)
        _enrollments_col.update_many(
            {"class_id": class_id, "student_id": {"$in": doc["member_ids"]}},
            {"$set": {"group_number": number, "grouping_rationale": group_rationale}},
        )
        created.append({
            "id": doc["id"],
            "name": doc["name"],
            "studentCount": len(doc["member_ids"]),
            "rationale": group_rationale,
        })
    log.info("Applied %d groups to class %s", len(created), class_id)
    return created


# ---------------------- Pending groupings ----------------------

def save_pending_grouping(class_id: str, result: GroupingResult, validation: ValidationReport) -> Dict[str, Any]:
    """Store a generated grouping for teacher review (status PENDING)."""
    _ensure_initialized()
    if _groupings_col is None:
        raise RuntimeError("Groupings collection is not available")
    record = {
        "id": str(uuid.uuid4()),
        "class_id": class_id,
        "grouping_data": result.model_dump(mode="json"),
        "rationale": result.rationale,
        "algorithm_version": result.algorithm_version,
        "validation": validation.model_dump(),
        "status": "PENDING",
        "created_at": datetime.now(),
        "applied_at": None,
    }
    _groupings_col.insert_one(record)
    return _sanitize(record)


def get_grouping(class_id: str, grouping_id: str, status: Optional[str] = None) -> Optional[Dict[str, Any]]:
    _ensure_initialized()
    if _groupings_col is None:
        return None
    query: Dict[str, Any] = {"id": grouping_id, "class_id": class_id}
    if status:
        query["status"] = status
    return _groupings_col.find_one(query, {"_id": 0})


def mark_grouping_applied(grouping_id: str) -> None:
    _ensure_initialized()
    if _groupings_col is None:
        return
    _groupings_col.update_one(
        {"id": grouping_id},
        {"$set": {"status": "APPLIED", "applied_at": datetime.now()}},
    )


# ---------------------- Historical metrics ----------------------

def store_group_performance_metrics(class_id: str, group_id: str, data: GroupPerformanceData) -> None:
    """Best-effort history write; groups without a stored record are skipped."""
    _ensure_initialized()
    if _groups_col is None or _metrics_col is None:
        return
    try:
        if _groups_col.find_one({"id": group_id}, {"_id": 1}) is None:
            log.info("Skipping metrics storage for non-existent group %s", group_id)
            return
        period_end = datetime.now()
        metadata = {"abilityDistribution": data.ability_distribution.model_dump()}
        values = {
            "GROUP_AVERAGE_SCORE": data.average_score,
            "GROUP_IMPROVEMENT_RATE": data.improvement_rate,
            "GROUP_RETENTION_RATE": data.retention_rate,
            "GROUP_GENDER_BALANCE": data.gender_balance_score,
        }
        _metrics_col.insert_many([
            {
                "class_id": class_id,
                "group_id": group_id,
                "metric_type": metric_type,
                "value": value,
                "period_start": period_end - METRICS_PERIOD,
                "period_end": period_end,
                "metadata": metadata,
            }
            for metric_type, value in values.items()
        ])
    except PyMongoError as exc:
        log.warning("Failed to store metrics for group %s: %s", group_id, exc)


__all__ = [
    "init_db",
    "list_roster",
    "list_groups",
    "apply_grouping",
    "save_pending_grouping",
    "get_grouping",
    "mark_grouping_applied",
    "store_group_performance_metrics",
]
