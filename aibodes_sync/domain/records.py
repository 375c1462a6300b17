# aibodes_sync/domain/records.py
from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, ClassVar, TypeVar

from .address import address_identity, normalize_address_fields, normalize_location, price_bucket
from .parsing import get_first, parse_timestamp, to_float, to_int, to_str

DEFAULT_PRICE_BUCKET = 10_000


class RecordKind(str, enum.Enum):
    property = "property"
    market = "market"
    neighborhood = "neighborhood"


R = TypeVar("R", bound="Record")


@dataclass(frozen=True)
class Record:
    """
    Canonical record held by the RecordStore.

    key is the cross-provider identity (never a provider's own id), payload is
    the canonicalized provider payload, fetched_at decides last-write-wins.
    """

    key: str
    payload: dict[str, Any]
    fetched_at: datetime
    source: str = "unknown"

    kind: ClassVar[RecordKind]

    def copy(self: R) -> R:
        return replace(self, payload=copy.deepcopy(self.payload))

    def same_payload(self, other: "Record") -> bool:
        return self.payload == other.payload


@dataclass(frozen=True)
class PropertyRecord(Record):
    kind: ClassVar[RecordKind] = RecordKind.property

    @property
    def price(self) -> float | None:
        return to_float(self.payload.get("listPrice"))

    @property
    def address(self) -> str:
        return str(self.payload.get("addressLine") or self.payload.get("location") or "")

    @classmethod
    def from_payload(
        cls,
        item: dict[str, Any],
        *,
        source: str,
        fetched_at: datetime,
        bucket_size: int = DEFAULT_PRICE_BUCKET,
    ) -> "PropertyRecord":
        """Raises ValueError when the item has no usable address."""
        payload = canonicalize_property_payload(item)
        ident = address_identity(payload)
        key = f"{RecordKind.property.value}::{ident}::{price_bucket(payload.get('listPrice'), bucket_size)}"
        return cls(key=key, payload=payload, fetched_at=_item_time(item, fetched_at), source=source)


@dataclass(frozen=True)
class MarketSnapshot(Record):
    kind: ClassVar[RecordKind] = RecordKind.market

    @property
    def location(self) -> str:
        return str(self.payload.get("location") or "")

    @classmethod
    def from_payload(cls, item: dict[str, Any], *, source: str, fetched_at: datetime) -> "MarketSnapshot":
        payload = canonicalize_market_payload(item)
        return cls(
            key=location_key(RecordKind.market, payload["location"]),
            payload=payload,
            fetched_at=_item_time(item, fetched_at),
            source=source,
        )


@dataclass(frozen=True)
class NeighborhoodSnapshot(Record):
    kind: ClassVar[RecordKind] = RecordKind.neighborhood

    @property
    def location(self) -> str:
        return str(self.payload.get("location") or "")

    @classmethod
    def from_payload(cls, item: dict[str, Any], *, source: str, fetched_at: datetime) -> "NeighborhoodSnapshot":
        payload = dict(item)
        loc = to_str(get_first(payload, "location", "name", "zipCode"))
        if not loc:
            raise ValueError("neighborhood payload has no location/name")
        payload["location"] = loc
        payload.pop("fetchedAt", None)
        return cls(
            key=location_key(RecordKind.neighborhood, loc),
            payload=payload,
            fetched_at=_item_time(item, fetched_at),
            source=source,
        )


def location_key(kind: RecordKind, location: str) -> str:
    norm = normalize_location(location)
    if not norm:
        raise ValueError(f"empty location for {kind.value} record")
    return f"{kind.value}::{norm}"


def _item_time(item: dict[str, Any], default: datetime) -> datetime:
    """Providers may stamp items themselves; otherwise the fetch time wins."""
    return parse_timestamp(item.get("fetchedAt")) or default


def canonicalize_property_payload(item: dict[str, Any]) -> dict[str, Any]:
    """
    Normalize a listing payload into canonical keys used across sources:
      addressLine, city, state, zipCode,
      listPrice, propertyType,
      bedrooms, bathrooms, squareFeet,
      latitude, longitude, listingId
    Unknown keys are kept.
    """
    payload = normalize_address_fields(item)
    payload.pop("fetchedAt", None)

    payload["listPrice"] = to_float(get_first(payload, "listPrice", "price", "ListPrice", "listingPrice"))
    payload["propertyType"] = to_str(get_first(payload, "propertyType", "type", "PropertyType"))
    payload["bedrooms"] = to_int(get_first(payload, "bedrooms", "beds", "BedroomsTotal"))
    payload["bathrooms"] = to_float(get_first(payload, "bathrooms", "baths", "BathroomsTotal"))
    payload["squareFeet"] = to_float(get_first(payload, "squareFeet", "sqft", "area", "LivingArea"))
    payload["latitude"] = to_float(get_first(payload, "latitude", "lat", "Latitude"))
    payload["longitude"] = to_float(get_first(payload, "longitude", "lon", "lng", "Longitude"))
    payload["listingId"] = to_str(get_first(payload, "listingId", "id", "ListingKey", "ListingId"))

    return payload


def canonicalize_market_payload(item: dict[str, Any]) -> dict[str, Any]:
    payload = dict(item)
    payload.pop("fetchedAt", None)
    loc = to_str(get_first(payload, "location", "market", "zipCode"))
    if not loc:
        raise ValueError("market payload has no location")
    payload["location"] = loc

    for k in ("medianPrice", "pricePerSqFt", "priceChangeYoY", "priceChangeMoM", "inventoryMonths"):
        if k in payload:
            payload[k] = to_float(payload[k])
    for k in ("activeListings", "averageDaysOnMarket", "newListings", "soldProperties"):
        if k in payload:
            payload[k] = to_int(payload[k])

    return payload
