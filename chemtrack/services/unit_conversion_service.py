from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from chemtrack.models import PurchaseUnit, StockLocation

GALLON_INCREMENT = Decimal('0.1')
BUCKET_REQUEST_INCREMENT = Decimal('0.25')


class ChemicalDefinition(Protocol):
    name: str
    unit: PurchaseUnit
    increment: Decimal
    gallons_per_unit: Decimal | None
    track_on_shelf: bool
    track_on_line: bool


def as_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 stays 0.1 instead of its binary expansion.
    return Decimal(str(value))


def has_gallon_conversion(chemical: ChemicalDefinition) -> bool:
    return chemical.gallons_per_unit is not None


def to_base(chemical: ChemicalDefinition, purchase_units: Decimal) -> Decimal:
    qty = as_decimal(purchase_units)
    if chemical.gallons_per_unit is None:
        return qty
    return qty * as_decimal(chemical.gallons_per_unit)


def to_purchase_units(chemical: ChemicalDefinition, base_qty: Decimal) -> Decimal:
    qty = as_decimal(base_qty)
    if chemical.gallons_per_unit is None:
        return qty
    return qty / as_decimal(chemical.gallons_per_unit)


def allowed_increment(chemical: ChemicalDefinition) -> Decimal:
    if chemical.gallons_per_unit is not None:
        return GALLON_INCREMENT
    return as_decimal(chemical.increment)


def request_increment(chemical: ChemicalDefinition) -> Decimal:
    if chemical.unit == PurchaseUnit.BUCKET:
        return BUCKET_REQUEST_INCREMENT
    return as_decimal(chemical.increment)


def allowed_locations(chemical: ChemicalDefinition) -> list[StockLocation]:
    locations: list[StockLocation] = []
    if chemical.track_on_shelf:
        locations.append(StockLocation.SHELF)
    if chemical.track_on_line:
        locations.append(StockLocation.LINE)
    return locations


def base_unit_label(chemical: ChemicalDefinition) -> str:
    return 'gallon' if has_gallon_conversion(chemical) else chemical.unit.value.lower()


def _plural_unit(unit: PurchaseUnit, qty: Decimal) -> str:
    label = unit.value.lower()
    if qty == 1:
        return label
    return label + ('es' if label == 'box' else 's')


def format_quantity(chemical: ChemicalDefinition, base_qty: Decimal) -> str:
    qty = as_decimal(base_qty)
    if chemical.gallons_per_unit is None:
        return f'{_trim(qty)} {_plural_unit(chemical.unit, qty)}'
    units = to_purchase_units(chemical, qty)
    return f'{qty:.1f} gal ({units:.1f} {_plural_unit(chemical.unit, units)})'


def _trim(value: Decimal) -> str:
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal('1')))
    return format(normalized, 'f')
