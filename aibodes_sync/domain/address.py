# aibodes_sync/domain/address.py
from __future__ import annotations

import re
from typing import Any

from .parsing import get_first, get_nested, to_float

# Minimal canonicalization; swap for a USPS-grade normalizer if we ever need one.
_SUFFIXES: dict[str, str] = {
    "STREET": "ST",
    "AVENUE": "AVE",
    "ROAD": "RD",
    "DRIVE": "DR",
    "BOULEVARD": "BLVD",
    "LANE": "LN",
    "COURT": "CT",
    "PLACE": "PL",
    "TERRACE": "TER",
    "PARKWAY": "PKWY",
    "HIGHWAY": "HWY",
    "CIRCLE": "CIR",
    "SQUARE": "SQ",
    "TRAIL": "TRL",
}

_DIRECTIONS: dict[str, str] = {
    "NORTH": "N",
    "SOUTH": "S",
    "EAST": "E",
    "WEST": "W",
    "NORTHEAST": "NE",
    "NORTHWEST": "NW",
    "SOUTHEAST": "SE",
    "SOUTHWEST": "SW",
}

_UNITS: dict[str, str] = {
    "APARTMENT": "UNIT",
    "APT": "UNIT",
    "SUITE": "UNIT",
    "STE": "UNIT",
    "#": "UNIT",
}

_PUNCT = re.compile(r"[^\w#\s]")
_SPACES = re.compile(r"\s+")


def normalize_text(s: str) -> str:
    s = s.upper().replace("#", " # ")
    s = _PUNCT.sub(" ", s)
    return _SPACES.sub(" ", s).strip()


def normalize_street(address_line: str) -> str:
    """
    '123 North Main Street, Apt. 4' -> '123 N MAIN ST UNIT 4'
    """
    out: list[str] = []
    for tok in normalize_text(address_line).split(" "):
        tok = _UNITS.get(tok, tok)
        tok = _DIRECTIONS.get(tok, tok)
        tok = _SUFFIXES.get(tok, tok)
        if tok == "UNIT" and out and out[-1] == "UNIT":
            continue
        out.append(tok)
    return " ".join(out)


def normalize_location(location: str) -> str:
    """Market / neighborhood location: 'Austin, tx ' -> 'AUSTIN TX'."""
    return normalize_text(location)


def normalize_address_fields(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Take a provider payload and produce canonical address fields:
      addressLine, city, state, zipCode

    Supports typical listing-API keys and some nested variants.
    """
    addr_line = get_first(payload, "addressLine", "addressLine1", "streetAddress", "street", "formattedAddress")
    addr = payload.get("address")
    if not addr_line and isinstance(addr, str):
        addr_line = addr
    if not addr_line:
        addr_line = (
            get_nested(payload, "address.addressLine")
            or get_nested(payload, "address.line")
            or get_nested(payload, "address.line1")
        )

    city = get_first(payload, "city") or get_nested(payload, "address.city")

    state = get_first(payload, "state", "stateCode", "province")
    if not state:
        state = get_nested(payload, "address.state") or get_nested(payload, "address.stateCode")

    zipc = get_first(payload, "zipCode", "zipcode", "zip", "postalCode")
    if not zipc:
        zipc = (
            get_nested(payload, "address.zip")
            or get_nested(payload, "address.zipCode")
            or get_nested(payload, "address.postalCode")
        )

    out = dict(payload)
    if addr_line is not None:
        out["addressLine"] = str(addr_line).strip()
    if city is not None:
        out["city"] = str(city).strip()
    if state is not None:
        out["state"] = str(state).strip()
    if zipc is not None:
        out["zipCode"] = str(zipc).strip()

    return out


def address_identity(p: dict[str, Any]) -> str:
    """
    Normalized address part of a property identity key.
    Raises ValueError when the payload has nothing address-like.
    """
    address_line = (p.get("addressLine") or "").strip()
    if address_line:
        parts = [normalize_street(address_line)]
        for k in ("city", "state", "zipCode"):
            v = str(p.get(k) or "").strip()
            if v:
                parts.append(normalize_text(v))
        return "|".join(parts)

    # Single free-form string (push payloads and older providers send `location`)
    loose = str(p.get("location") or "").strip()
    if loose:
        return normalize_street(loose)

    hint = {"keys": sorted(list(p.keys()))[:25]}
    raise ValueError(f"Missing address fields for property identity. hint={hint}")


def price_bucket(price: Any, bucket_size: int) -> str:
    """floor(price / bucket_size); 'na' when there is no usable price."""
    p = to_float(price)
    if p is None or p < 0 or bucket_size <= 0:
        return "na"
    return str(int(p // bucket_size))
