"""MongoDB alert store backed by Motor."""

from __future__ import annotations

import datetime
import re
from collections.abc import Iterable
from enum import Enum
from typing import Any

import structlog
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, GEOSPHERE
from pymongo.errors import DuplicateKeyError, PyMongoError

from ridealert.core.config import StoreConfig
from ridealert.core.geo import radius_to_radians
from ridealert.core.types import (
    Alert,
    AlertFilter,
    AlertStatus,
    DeliveryStatus,
    GeoPoint,
    Severity,
)
from ridealert.store.base import NEWEST_FIRST, AlertStore, SortSpec
from ridealert.store.exceptions import (
    DuplicateOpenAlertError,
    StaleWriteError,
    StoreError,
)

logger = structlog.get_logger(__name__)

# Present only while the alert is open; a unique partial index on it
# enforces one open alert per trip.
OPEN_TRIP_FIELD = "open_trip_reference"


def _plain(value: Any) -> Any:
    """Recursively replace enum members with their raw values for BSON."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def alert_to_document(alert: Alert) -> dict[str, Any]:
    doc = _plain(alert.model_dump(mode="python", exclude={"id"}))
    doc["_id"] = alert.id
    doc["position"] = alert.position.to_geojson()
    if alert.is_open:
        doc[OPEN_TRIP_FIELD] = alert.trip_reference
    return doc


def document_to_alert(doc: dict[str, Any]) -> Alert:
    data = dict(doc)
    data["id"] = data.pop("_id")
    data.pop(OPEN_TRIP_FIELD, None)
    return Alert.model_validate(data)


def filter_to_query(criteria: AlertFilter) -> dict[str, Any]:
    """Translate an AlertFilter into a MongoDB query document."""
    query: dict[str, Any] = {}
    if criteria.statuses:
        query["status"] = {"$in": [s.value for s in criteria.statuses]}
    if criteria.categories:
        query["category"] = {"$in": [c.value for c in criteria.categories]}
    if criteria.critical_only:
        query["severity"] = Severity.CRITICAL.value
    elif criteria.severities:
        query["severity"] = {"$in": [s.value for s in criteria.severities]}
    if criteria.triggered_by is not None:
        query["triggered_by"] = criteria.triggered_by
    if criteria.locality:
        query["locality"] = {
            "$regex": re.escape(criteria.locality),
            "$options": "i",
        }
    created: dict[str, datetime.datetime] = {}
    if criteria.created_from is not None:
        created["$gte"] = criteria.created_from
    if criteria.created_to is not None:
        created["$lte"] = criteria.created_to
    if created:
        query["created_at"] = created
    return query


class MongoAlertStore(AlertStore):
    """Alert store over a single MongoDB collection.

    Call :meth:`ensure_indexes` once at startup; the open-trip guarantee
    depends on the unique partial index it creates.
    """

    def __init__(self, collection: Any, client: Any | None = None) -> None:
        self._collection = collection
        self._client = client

    @classmethod
    def from_config(cls, config: StoreConfig) -> MongoAlertStore:
        client = AsyncIOMotorClient(config.mongo_uri, tz_aware=True)
        return cls(client[config.database][config.collection], client=client)

    async def ensure_indexes(self) -> None:
        try:
            await self._collection.create_index(
                [(OPEN_TRIP_FIELD, ASCENDING)],
                name="uniq_open_trip",
                unique=True,
                partialFilterExpression={OPEN_TRIP_FIELD: {"$exists": True}},
            )
            await self._collection.create_index(
                [("position", GEOSPHERE)], name="position_2dsphere",
            )
            await self._collection.create_index(
                [("status", ASCENDING), ("created_at", DESCENDING)],
                name="status_created",
            )
        except PyMongoError as exc:
            raise StoreError(f"index creation failed: {exc}") from exc
        logger.info("mongo_indexes_ready")

    async def insert_if_no_open(self, alert: Alert) -> None:
        try:
            await self._collection.insert_one(alert_to_document(alert))
        except DuplicateKeyError as exc:
            raise DuplicateOpenAlertError(
                f"open alert exists for trip {alert.trip_reference}"
            ) from exc
        except PyMongoError as exc:
            raise StoreError(f"insert failed: {exc}") from exc

    async def get(self, alert_id: str) -> Alert | None:
        try:
            doc = await self._collection.find_one({"_id": alert_id})
        except PyMongoError as exc:
            raise StoreError(f"read failed: {exc}") from exc
        return document_to_alert(doc) if doc else None

    async def replace(self, alert: Alert, expected_version: int) -> Alert:
        stored = alert.model_copy(update={"version": expected_version + 1})
        try:
            result = await self._collection.replace_one(
                {"_id": alert.id, "version": expected_version},
                alert_to_document(stored),
            )
        except DuplicateKeyError as exc:
            raise DuplicateOpenAlertError(
                f"open alert exists for trip {alert.trip_reference}"
            ) from exc
        except PyMongoError as exc:
            raise StoreError(f"replace failed: {exc}") from exc
        if result.matched_count == 0:
            raise StaleWriteError(f"alert {alert.id} changed since read")
        return stored

    async def update_contact_status(
        self,
        alert_id: str,
        contact_id: str,
        status: DeliveryStatus,
        at: datetime.datetime,
    ) -> bool:
        fields: dict[str, Any] = {"notified_contacts.$.delivery_status": status.value}
        if status == DeliveryStatus.SENT:
            fields["notified_contacts.$.notified_at"] = at
        try:
            result = await self._collection.update_one(
                {"_id": alert_id, "notified_contacts.id": contact_id},
                {"$set": fields, "$inc": {"version": 1}},
            )
        except PyMongoError as exc:
            raise StoreError(f"contact update failed: {exc}") from exc
        return result.modified_count > 0

    async def mark_emergency_notified(
        self, alert_id: str, at: datetime.datetime,
    ) -> bool:
        try:
            result = await self._collection.update_one(
                {"_id": alert_id, "emergency_notified_at": None},
                {"$set": {"emergency_notified_at": at}, "$inc": {"version": 1}},
            )
        except PyMongoError as exc:
            raise StoreError(f"emergency stamp failed: {exc}") from exc
        return result.modified_count > 0

    async def find_open_for_trip(self, trip_reference: str) -> Alert | None:
        try:
            doc = await self._collection.find_one({OPEN_TRIP_FIELD: trip_reference})
        except PyMongoError as exc:
            raise StoreError(f"read failed: {exc}") from exc
        return document_to_alert(doc) if doc else None

    async def find_within_radius(
        self,
        point: GeoPoint,
        radius_km: float,
        statuses: Iterable[AlertStatus],
    ) -> list[Alert]:
        query = {
            "status": {"$in": [s.value for s in statuses]},
            "position": {
                "$geoWithin": {
                    "$centerSphere": [
                        [point.longitude, point.latitude],
                        radius_to_radians(radius_km),
                    ],
                },
            },
        }
        return await self._find(query)

    async def find(
        self,
        criteria: AlertFilter,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec = NEWEST_FIRST,
    ) -> list[Alert]:
        return await self._find(filter_to_query(criteria), skip, limit, sort)

    async def count(self, criteria: AlertFilter) -> int:
        try:
            return await self._collection.count_documents(filter_to_query(criteria))
        except PyMongoError as exc:
            raise StoreError(f"count failed: {exc}") from exc

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    async def _find(
        self,
        query: dict[str, Any],
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec | None = None,
    ) -> list[Alert]:
        cursor = self._collection.find(query)
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit is not None:
            cursor = cursor.limit(limit)
        try:
            docs = await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise StoreError(f"query failed: {exc}") from exc
        return [document_to_alert(d) for d in docs]
