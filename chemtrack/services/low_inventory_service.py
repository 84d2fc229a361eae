from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from chemtrack.models import PurchaseUnit, StockLocation
from chemtrack.services.unit_conversion_service import ChemicalDefinition, as_decimal


class RuleMatch(str, Enum):
    NAME = 'NAME'
    NAME_PREFIX = 'NAME_PREFIX'
    UNIT_AND_GALLONS = 'UNIT_AND_GALLONS'


class ThresholdUnit(str, Enum):
    # Threshold is already expressed in the stored (base) unit.
    BASE = 'BASE'
    # Threshold is in purchase units and converted via gallons_per_unit when present.
    PURCHASE = 'PURCHASE'


class Comparison(str, Enum):
    LT = 'LT'
    LTE = 'LTE'


@dataclass(frozen=True)
class LowInventoryRule:
    key: str
    match: RuleMatch
    location: StockLocation
    threshold: Decimal
    threshold_unit: ThresholdUnit
    comparison: Comparison = Comparison.LT
    names: tuple[str, ...] = ()
    unit: PurchaseUnit | None = None
    gallons_per_unit: Decimal | None = None

    def matches(self, chemical: ChemicalDefinition) -> bool:
        if self.match == RuleMatch.NAME:
            return chemical.name in self.names
        if self.match == RuleMatch.NAME_PREFIX:
            return any(chemical.name.startswith(prefix) for prefix in self.names)
        if chemical.gallons_per_unit is None:
            return False
        return chemical.unit == self.unit and as_decimal(chemical.gallons_per_unit) == self.gallons_per_unit

    def threshold_in_base(self, chemical: ChemicalDefinition) -> Decimal:
        if self.threshold_unit == ThresholdUnit.PURCHASE and chemical.gallons_per_unit is not None:
            return self.threshold * as_decimal(chemical.gallons_per_unit)
        return self.threshold

    def is_low(self, current: Decimal, threshold_in_base: Decimal) -> bool:
        if self.comparison == Comparison.LTE:
            return current <= threshold_in_base
        return current < threshold_in_base


# Named rules are matched before the generic category rule; the named
# categories do not overlap with each other.
LOW_INVENTORY_RULES: tuple[LowInventoryRule, ...] = (
    LowInventoryRule(
        key='clean_kit_line',
        match=RuleMatch.NAME,
        names=('Clean Kit',),
        location=StockLocation.LINE,
        threshold=Decimal('2'),
        threshold_unit=ThresholdUnit.BASE,
    ),
    LowInventoryRule(
        key='tire_shine_shelf',
        match=RuleMatch.NAME,
        names=('Tire Shine',),
        location=StockLocation.SHELF,
        threshold=Decimal('30'),
        threshold_unit=ThresholdUnit.BASE,
    ),
    LowInventoryRule(
        key='bucket_cleaners_shelf',
        match=RuleMatch.NAME,
        names=('RLC', 'Glass Cleaner'),
        location=StockLocation.SHELF,
        threshold=Decimal('5'),
        threshold_unit=ThresholdUnit.BASE,
    ),
    LowInventoryRule(
        key='air_fresheners_shelf',
        match=RuleMatch.NAME_PREFIX,
        names=('Air Freshener',),
        location=StockLocation.SHELF,
        threshold=Decimal('1'),
        threshold_unit=ThresholdUnit.PURCHASE,
    ),
    LowInventoryRule(
        key='bottles_shelf',
        match=RuleMatch.NAME,
        names=('Bottles',),
        location=StockLocation.SHELF,
        threshold=Decimal('0.5'),
        threshold_unit=ThresholdUnit.PURCHASE,
        comparison=Comparison.LTE,
    ),
    LowInventoryRule(
        key='bottle_triggers_shelf',
        match=RuleMatch.NAME,
        names=('Bottle Triggers',),
        location=StockLocation.SHELF,
        threshold=Decimal('0.5'),
        threshold_unit=ThresholdUnit.PURCHASE,
    ),
    LowInventoryRule(
        key='five_gallon_box_shelf',
        match=RuleMatch.UNIT_AND_GALLONS,
        unit=PurchaseUnit.BOX,
        gallons_per_unit=Decimal('5'),
        location=StockLocation.SHELF,
        threshold=Decimal('2'),
        threshold_unit=ThresholdUnit.PURCHASE,
    ),
)


@dataclass(frozen=True)
class LowInventoryAlert:
    chemical_name: str
    unit: PurchaseUnit
    rule_key: str
    location: StockLocation
    threshold: Decimal
    threshold_in_base: Decimal
    current: Decimal


def select_rule(
    chemical: ChemicalDefinition,
    rules: Iterable[LowInventoryRule] = LOW_INVENTORY_RULES,
) -> LowInventoryRule | None:
    for rule in rules:
        if rule.matches(chemical):
            return rule
    return None


def evaluate_chemical(
    chemical: ChemicalDefinition,
    shelf_qty: Decimal,
    line_qty: Decimal,
    rules: Iterable[LowInventoryRule] = LOW_INVENTORY_RULES,
) -> LowInventoryAlert | None:
    rule = select_rule(chemical, rules)
    if rule is None:
        return None

    current = as_decimal(shelf_qty if rule.location == StockLocation.SHELF else line_qty)
    threshold_in_base = rule.threshold_in_base(chemical)
    if not rule.is_low(current, threshold_in_base):
        return None
    return LowInventoryAlert(
        chemical_name=chemical.name,
        unit=chemical.unit,
        rule_key=rule.key,
        location=rule.location,
        threshold=rule.threshold,
        threshold_in_base=threshold_in_base,
        current=current,
    )


def build_low_inventory_report(
    rows: Iterable[tuple[ChemicalDefinition, Decimal, Decimal]],
    rules: Iterable[LowInventoryRule] = LOW_INVENTORY_RULES,
) -> list[LowInventoryAlert]:
    rules = tuple(rules)
    alerts: list[LowInventoryAlert] = []
    for chemical, shelf_qty, line_qty in rows:
        alert = evaluate_chemical(chemical, shelf_qty, line_qty, rules)
        if alert:
            alerts.append(alert)
    return alerts
