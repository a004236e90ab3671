"""Home-visit pricing zones and their slot tables."""
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

STANDARD = "standard"
LONDON = "london"
OUT_OF_AREA = "out_of_area"

SLOT_TABLE_VERSION = "2024.1"

# Postcode areas (the leading letters) inside the London zone
LONDON_AREAS = frozenset({"EC", "WC", "E", "N", "NW", "SE", "SW", "W"})

# Areas the mobile team does not cover: Highlands and islands, Northern
# Ireland, Channel Islands, Isle of Man
OUT_OF_AREA_AREAS = frozenset({"IV", "KW", "HS", "ZE", "BT", "GY", "JE", "IM"})

OUT_OF_AREA_MESSAGE = (
    "Home phlebotomy visits are not available at this address yet. "
    "Please choose a clinic appointment or a self-collection kit instead."
)

_AREA_RE = re.compile(r"^([A-Z]{1,2})[0-9]")


@dataclass(frozen=True)
class Slot:
    shift_type: str
    slot_times: str
    price: Decimal
    weekend_surcharge: Decimal


STANDARD_ZONE_SLOTS: Tuple[Slot, ...] = (
    Slot("Early Morning", "7:00 AM - 9:00 AM", Decimal("55"), Decimal("10")),
    Slot("Daytime", "9:00 AM - 4:00 PM", Decimal("45"), Decimal("10")),
    Slot("Evening", "4:00 PM - 7:30 PM", Decimal("55"), Decimal("10")),
)

LONDON_ZONE_SLOTS: Tuple[Slot, ...] = (
    Slot("Early Morning", "7:00 AM - 9:00 AM", Decimal("65"), Decimal("10")),
    Slot("Daytime", "9:00 AM - 4:00 PM", Decimal("55"), Decimal("10")),
    Slot("Evening", "4:00 PM - 7:30 PM", Decimal("65"), Decimal("10")),
)

ZONE_SLOTS = {
    STANDARD: STANDARD_ZONE_SLOTS,
    LONDON: LONDON_ZONE_SLOTS,
    OUT_OF_AREA: (),
}


def normalize_postcode(postcode: Optional[str]) -> str:
    if not postcode:
        return ""
    return re.sub(r"\s", "", postcode).upper()


def outward_code(postcode: Optional[str]) -> str:
    """`SW1A1AA` -> `SW1A`. UK inward codes are always three characters."""
    normalized = normalize_postcode(postcode)
    if len(normalized) > 4:
        return normalized[:-3]
    return normalized


def postcode_area(postcode: Optional[str]) -> str:
    match = _AREA_RE.match(normalize_postcode(postcode))
    return match.group(1) if match else ""


def normalize_town(town: Optional[str]) -> str:
    if not town:
        return ""
    return " ".join(town.split()).lower()


def zone_from_heuristics(postcode: Optional[str], town: Optional[str]) -> Optional[str]:
    """Format-based zone guess; None when neither postcode nor town says anything."""
    area = postcode_area(postcode)
    if area in OUT_OF_AREA_AREAS:
        return OUT_OF_AREA
    if area in LONDON_AREAS:
        return LONDON
    if area:
        return STANDARD
    if normalize_town(town) == "london":
        return LONDON
    return None


def slots_for_zone(zone: str) -> Tuple[Slot, ...]:
    return ZONE_SLOTS.get(zone, STANDARD_ZONE_SLOTS)


def find_slot(zone: str, shift_type: str) -> Optional[Slot]:
    wanted = (shift_type or "").strip().lower()
    for slot in slots_for_zone(zone):
        if slot.shift_type.lower() == wanted:
            return slot
    return None
