# aibodes_sync/domain/messages.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    fetched_at: datetime | None = Field(default=None, alias="fetchedAt")

    def stamped(self, received_at: datetime) -> datetime:
        """Message time if the server sent one, else when we read the frame."""
        ts = self.fetched_at
        if ts is None:
            return received_at
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts


class PropertyUpdate(_Inbound):
    type: Literal["property_update"]
    properties: list[Any] = []  # items validated one by one downstream


class MarketDataUpdate(_Inbound):
    type: Literal["market_data_update"]
    market_data: dict[str, Any] = Field(alias="marketData")


class NeighborhoodDataUpdate(_Inbound):
    type: Literal["neighborhood_data_update"]
    neighborhood_data: dict[str, Any] = Field(alias="neighborhoodData")


class PriceAlert(_Inbound):
    type: Literal["price_alert"]
    property_id: str = Field(alias="propertyId")
    old_price: float = Field(alias="oldPrice")
    new_price: float = Field(alias="newPrice")
    change_percent: float | None = Field(default=None, alias="changePercent")

    def percent(self) -> float | None:
        if self.change_percent is not None:
            return self.change_percent
        if not self.old_price:
            return None
        return (self.new_price - self.old_price) / self.old_price * 100.0


class NewListing(_Inbound):
    type: Literal["new_listing"]
    listing: dict[str, Any] = Field(alias="property")


class AuthOk(_Inbound):
    type: Literal["auth_ok"]


class AuthError(_Inbound):
    type: Literal["auth_error"]
    reason: str | None = None


class UnknownMessage(BaseModel):
    type: str
    raw: dict[str, Any]


InboundMessage = Annotated[
    Union[PropertyUpdate, MarketDataUpdate, NeighborhoodDataUpdate, PriceAlert, NewListing, AuthOk, AuthError],
    Field(discriminator="type"),
]

_INBOUND = TypeAdapter(InboundMessage)

KNOWN_TYPES: frozenset[str] = frozenset(
    {
        "property_update",
        "market_data_update",
        "neighborhood_data_update",
        "price_alert",
        "new_listing",
        "auth_ok",
        "auth_error",
    }
)


def decode_message(raw: str | bytes | dict[str, Any]) -> InboundMessage | UnknownMessage:
    """
    Map one push-channel frame to its typed variant.

    Unrecognized `type` values come back as UnknownMessage (callers log and ignore).
    Malformed frames raise ValueError (pydantic's ValidationError included).
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"frame is not JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise ValueError(f"frame is not a JSON object: {type(data).__name__}")

    t = data.get("type")
    if t not in KNOWN_TYPES:
        return UnknownMessage(type=str(t), raw=data)

    return _INBOUND.validate_python(data)


def auth_envelope(token: str, user_id: str) -> dict[str, str]:
    return {"type": "auth", "token": token, "userId": user_id}
