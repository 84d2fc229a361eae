from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from chemtrack.models import StockLocation
from chemtrack.services.unit_conversion_service import (
    ChemicalDefinition,
    allowed_increment,
    allowed_locations,
    as_decimal,
    base_unit_label,
    request_increment,
)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None


VALID = ValidationResult(valid=True)

# Keeps converted gallon totals inside the Numeric(14, 3) quantity columns.
MAX_QUANTITY = Decimal('1000000')


def _fail(message: str) -> ValidationResult:
    return ValidationResult(valid=False, error=message)


def is_multiple_of(qty: Decimal, increment: Decimal) -> bool:
    if increment <= 0:
        raise ValueError('Increment must be greater than zero')
    return as_decimal(qty) % increment == 0


def _format_increment(increment: Decimal) -> str:
    normalized = increment.normalize()
    return format(normalized, 'f')


def _check_range(qty: Decimal) -> ValidationResult | None:
    if qty < 0:
        return _fail('Quantity must be greater than or equal to 0')
    if qty > MAX_QUANTITY:
        return _fail(f'Quantity must be less than or equal to {MAX_QUANTITY}')
    return None


def _check_location(chemical: ChemicalDefinition, location: StockLocation) -> ValidationResult | None:
    if location not in allowed_locations(chemical):
        return _fail(f'Location {location.value} is not allowed for this chemical')
    return None


def validate_absolute(chemical: ChemicalDefinition, location: StockLocation, qty: Decimal) -> ValidationResult:
    """Rule for absolute "set quantity" writes, in base units."""
    qty = as_decimal(qty)
    failure = _check_range(qty) or _check_location(chemical, location)
    if failure:
        return failure

    increment = allowed_increment(chemical)
    if not is_multiple_of(qty, increment):
        label = base_unit_label(chemical)
        plural = 's' if increment != 1 else ''
        if label == 'box' and plural:
            plural = 'es'
        return _fail(f'Quantity must be a multiple of {_format_increment(increment)} {label}{plural}')
    return VALID


def validate_whole(chemical: ChemicalDefinition, location: StockLocation, qty: Decimal) -> ValidationResult:
    """Rule for pickups and fulfillment: whole purchase units only."""
    qty = as_decimal(qty)
    failure = _check_range(qty) or _check_location(chemical, location)
    if failure:
        return failure
    if qty != qty.to_integral_value():
        return _fail('Quantity must be a whole number')
    return VALID


def validate_request_qty(chemical: ChemicalDefinition, qty: Decimal) -> ValidationResult:
    qty = as_decimal(qty)
    failure = _check_range(qty)
    if failure:
        return failure
    increment = request_increment(chemical)
    if not is_multiple_of(qty, increment):
        return _fail(f'Quantity must be a multiple of {_format_increment(increment)}')
    return VALID
