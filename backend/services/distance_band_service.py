"""
Distance Band Tables

Ordered, non-overlapping [fromKm, toKm) intervals mapped to a cost. Four
independent tables share this contract: lead tokens, trip tokens, lead
currency pricing and trip currency pricing.

Each table lives in one document ({_id: kind, version, bands: [...]}) so a
write is a compare-and-swap on `version`. An upsert re-reads the table,
re-validates the no-overlap rule against that state and only commits if no
other writer got in first.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from core.config import settings
from core.exceptions import (
    ConflictError,
    NotFoundError,
    NotPricedError,
    OverlapError,
    ValidationError,
)
from database import DISTANCE_BANDS
from models import BandTableKind

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "INR"


def intervals_overlap(new_from: float, new_to: float, from_km: float, to_km: float) -> bool:
    """
    Half-open interval overlap, checked as the three shapes:
    new start inside existing, new end inside existing, new contains existing.
    """
    start_inside = from_km <= new_from < to_km
    end_inside = from_km < new_to <= to_km
    contains = new_from <= from_km and to_km <= new_to
    return start_inside or end_inside or contains


class DistanceBandTable:
    """One distance band table, identified by its kind."""

    def __init__(self, db, kind: BandTableKind, retries: Optional[int] = None):
        self.kind = BandTableKind(kind)
        self.collection = db[DISTANCE_BANDS]
        self.retries = retries or settings.band_write_retries

    async def _load(self) -> Tuple[int, List[Dict[str, Any]]]:
        doc = await self.collection.find_one({"_id": self.kind.value})
        if not doc:
            return 0, []
        return doc.get("version", 0), list(doc.get("bands", []))

    async def _commit(self, version: int, bands: List[Dict[str, Any]]) -> bool:
        now = datetime.now(timezone.utc)
        if version == 0:
            try:
                await self.collection.insert_one({
                    "_id": self.kind.value,
                    "version": 1,
                    "bands": bands,
                    "updatedAt": now
                })
                return True
            except DuplicateKeyError:
                return False

        result = await self.collection.update_one(
            {"_id": self.kind.value, "version": version},
            {"$set": {"bands": bands, "updatedAt": now}, "$inc": {"version": 1}}
        )
        return result.modified_count == 1

    def _present(self, band: Dict[str, Any]) -> Dict[str, Any]:
        out = {
            "id": band["id"],
            "table": self.kind.value,
            "fromKm": band["fromKm"],
            "toKm": band["toKm"],
            "cost": band["cost"],
            "isActive": band["isActive"],
            "createdAt": band.get("createdAt"),
            "updatedAt": band.get("updatedAt"),
        }
        if self.kind.is_currency:
            out["currency"] = band.get("currency") or DEFAULT_CURRENCY
        return out

    @staticmethod
    def _validate(from_km, to_km, cost):
        if from_km is None or to_km is None or cost is None:
            raise ValidationError("fromKm, toKm and cost are required")
        if from_km < 0:
            raise ValidationError("fromKm must be >= 0")
        if to_km <= from_km:
            raise ValidationError("toKm must be greater than fromKm")
        if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
            raise ValidationError("cost must be a non-negative integer")

    async def upsert(
        self,
        data: Dict[str, Any],
        actor_id: Optional[str] = None,
        band_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a band, or update the active band `band_id` with the given
        fields. Raises OverlapError when the resulting interval overlaps
        another active band of this table.
        """
        for attempt in range(self.retries):
            version, bands = await self._load()
            now = datetime.now(timezone.utc)

            if band_id is not None:
                index = next(
                    (i for i, b in enumerate(bands) if b["id"] == band_id and b.get("isActive")),
                    None
                )
                if index is None:
                    raise NotFoundError("Distance band")
                current = bands[index]
                band = {
                    **current,
                    "fromKm": data.get("fromKm", current["fromKm"]),
                    "toKm": data.get("toKm", current["toKm"]),
                    "cost": data.get("cost", current["cost"]),
                    "lastUpdatedBy": actor_id,
                    "updatedAt": now,
                }
                if self.kind.is_currency and data.get("currency"):
                    band["currency"] = data["currency"]
            else:
                index = None
                band = {
                    "id": uuid.uuid4().hex,
                    "fromKm": data.get("fromKm"),
                    "toKm": data.get("toKm"),
                    "cost": data.get("cost"),
                    "isActive": data.get("isActive", True),
                    "addedBy": actor_id,
                    "createdAt": now,
                    "updatedAt": now,
                }
                if self.kind.is_currency:
                    band["currency"] = data.get("currency") or DEFAULT_CURRENCY

            self._validate(band["fromKm"], band["toKm"], band["cost"])

            if band["isActive"]:
                for other in bands:
                    if other["id"] == band["id"] or not other.get("isActive"):
                        continue
                    if intervals_overlap(band["fromKm"], band["toKm"], other["fromKm"], other["toKm"]):
                        raise OverlapError(
                            f"Band [{band['fromKm']}, {band['toKm']}) overlaps "
                            f"[{other['fromKm']}, {other['toKm']}) in {self.kind.value}"
                        )

            new_bands = list(bands)
            if index is None:
                new_bands.append(band)
            else:
                new_bands[index] = band

            if await self._commit(version, new_bands):
                action = "updated" if band_id else "created"
                logger.info(
                    f"Band {band['id']} {action} in {self.kind.value}: "
                    f"[{band['fromKm']}, {band['toKm']}) -> {band['cost']}"
                )
                return self._present(band)

            logger.warning(
                f"Concurrent write on {self.kind.value} (version {version}), "
                f"retrying ({attempt + 1}/{self.retries})"
            )

        raise ConflictError(f"Could not write band to {self.kind.value}: concurrent updates, try again")

    async def archive(self, band_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """Soft-delete a band. Archived bands no longer take part in overlap checks."""
        for attempt in range(self.retries):
            version, bands = await self._load()
            index = next(
                (i for i, b in enumerate(bands) if b["id"] == band_id and b.get("isActive")),
                None
            )
            if index is None:
                raise NotFoundError("Distance band")

            now = datetime.now(timezone.utc)
            band = {**bands[index], "isActive": False, "deletedBy": actor_id, "updatedAt": now}
            new_bands = list(bands)
            new_bands[index] = band

            if await self._commit(version, new_bands):
                logger.info(f"Band {band_id} archived in {self.kind.value}")
                return self._present(band)

        raise ConflictError(f"Could not archive band in {self.kind.value}: concurrent updates, try again")

    async def list_bands(self) -> List[Dict[str, Any]]:
        """Active bands ordered by fromKm."""
        _, bands = await self._load()
        active = [b for b in bands if b.get("isActive")]
        active.sort(key=lambda b: b["fromKm"])
        return [self._present(b) for b in active]

    async def find_band(self, distance_km: float) -> Dict[str, Any]:
        """The unique active band with fromKm <= distance_km < toKm."""
        _, bands = await self._load()
        covering = [
            b for b in bands
            if b.get("isActive") and b["fromKm"] <= distance_km < b["toKm"]
        ]
        if len(covering) != 1:
            raise NotPricedError(distance_km)
        return self._present(covering[0])

    async def lookup(self, distance_km: float) -> int:
        """Cost for a distance. Raises NotPricedError when no band covers it."""
        band = await self.find_band(distance_km)
        return band["cost"]
