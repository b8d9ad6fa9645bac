"""Unit conversion between mass, volume and count units.

Every unit belongs to one family with a base unit (g, ml, pcs). A
conversion goes from_unit -> base -> to_unit and is only defined inside a
family. Quantities are Decimal and are never rounded here; callers round
once at their own output boundary.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

# Factor converting one unit TO its base unit
UNIT_CONVERSIONS = {
    # Weight: base unit = g
    "g": Decimal("1"),
    "kg": Decimal("1000"),
    # Volume: base unit = ml
    "ml": Decimal("1"),
    "l": Decimal("1000"),
    # Count: base unit = pcs
    "pcs": Decimal("1"),
    # Packaging: sizes differ per raw item so a box never converts to pieces
    "box": Decimal("1"),
}

UNIT_ALIASES = {
    "gram": "g",
    "grams": "g",
    "kilogram": "kg",
    "kilograms": "kg",
    "milliliter": "ml",
    "millilitre": "ml",
    "liter": "l",
    "litre": "l",
    "piece": "pcs",
    "pieces": "pcs",
    "boxes": "box",
}

WEIGHT_UNITS = {"g", "kg"}
VOLUME_UNITS = {"ml", "l"}
COUNT_UNITS = {"pcs"}
PACKAGE_UNITS = {"box"}

# Units a recipe author may write
SUPPORTED_RECIPE_UNITS = {"g", "ml", "kg", "l", "pieces", "pcs", "box"}


class UnitConversionError(Exception):
    """Raised when unit conversion between incompatible types is attempted."""

    def __init__(self, from_unit: str, to_unit: str):
        self.from_unit = from_unit
        self.to_unit = to_unit
        super().__init__(f"Cannot convert '{from_unit}' to '{to_unit}'")


def normalize_unit(unit: str) -> str:
    """Lower-case, trim and resolve aliases (``Liter`` -> ``l``)."""
    u = (unit or "").lower().strip()
    return UNIT_ALIASES.get(u, u)


def unit_type(unit: str) -> Optional[str]:
    """Return weight, volume, count, package or None for unknown units."""
    u = normalize_unit(unit)
    if u in WEIGHT_UNITS:
        return "weight"
    if u in VOLUME_UNITS:
        return "volume"
    if u in COUNT_UNITS:
        return "count"
    if u in PACKAGE_UNITS:
        return "package"
    return None


def is_supported(unit: str) -> bool:
    return unit_type(unit) is not None


def is_supported_recipe_unit(unit: str) -> bool:
    """Check a unit against the fixed set accepted in recipe ingredients."""
    return (unit or "").lower().strip() in SUPPORTED_RECIPE_UNITS


def base_unit(unit: str) -> str:
    """Base unit of the unit's family (kg -> g, l -> ml)."""
    return {
        "weight": "g",
        "volume": "ml",
        "count": "pcs",
        "package": "box",
    }.get(unit_type(unit), normalize_unit(unit))


def normalize(quantity: Number, unit: str) -> Decimal:
    """Express a quantity in its base unit."""
    u = normalize_unit(unit)
    return Decimal(str(quantity)) * UNIT_CONVERSIONS.get(u, Decimal("1"))


def convert(quantity: Number, from_unit: str, to_unit: str) -> Decimal:
    """Convert ``quantity`` between two units of the same family.

    Raises:
        UnitConversionError: if either unit is unknown or the families differ.
    """
    qty = Decimal(str(quantity))
    src = normalize_unit(from_unit)
    dst = normalize_unit(to_unit)

    if src == dst:
        return qty

    src_type = unit_type(src)
    dst_type = unit_type(dst)
    if src_type is None or dst_type is None or src_type != dst_type:
        raise UnitConversionError(from_unit, to_unit)

    return qty * UNIT_CONVERSIONS[src] / UNIT_CONVERSIONS[dst]


def convert_or_keep(quantity: Number, from_unit: str, to_unit: str) -> Decimal:
    """Like :func:`convert` but returns the quantity unchanged when the
    units are incompatible, logging a warning instead of raising."""
    try:
        return convert(quantity, from_unit, to_unit)
    except UnitConversionError:
        logger.warning(
            f"Incompatible units '{from_unit}' -> '{to_unit}', using quantity as-is",
            extra={"event": "unit_mismatch", "from_unit": from_unit, "to_unit": to_unit},
        )
        return Decimal(str(quantity))
