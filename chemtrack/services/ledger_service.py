from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from chemtrack.models import (
    ActivityLog,
    ActivityType,
    Chemical,
    InventoryState,
    StockLocation,
    UsageEventType,
    UsageHistory,
    utc_now,
)
from chemtrack.services.errors import InventoryValidationError, NotFoundError
from chemtrack.services.quantity_validation_service import ValidationResult, validate_absolute, validate_whole
from chemtrack.services.unit_conversion_service import as_decimal, to_base

logger = logging.getLogger(__name__)

LOCATION_LABELS = {
    StockLocation.SHELF: 'On the Shelf',
    StockLocation.LINE: 'On the Line',
}


@dataclass(frozen=True)
class QuantityLine:
    chemical_id: int
    qty: Decimal | None
    cost_per_unit: Decimal | None = None


@dataclass
class LedgerWriteResult:
    batch_id: str | None
    activity_log_ids: list[int] = field(default_factory=list)
    usage_history_ids: list[int] = field(default_factory=list)
    chemical_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class _ValidLine:
    chemical: Chemical
    qty: Decimal
    cost_per_unit: Decimal | None


def new_batch_id() -> str:
    return str(uuid.uuid4())


def clean_note(note: str | None) -> str | None:
    return note.strip() if note and note.strip() else None


def load_chemicals(db: Session, chemical_ids: Iterable[int]) -> dict[int, Chemical]:
    ids = sorted(set(chemical_ids))
    if not ids:
        return {}
    rows = db.execute(select(Chemical).where(Chemical.id.in_(ids))).scalars().all()
    return {row.id: row for row in rows}


def validate_lines(
    db: Session,
    lines: Iterable[QuantityLine],
    validator: Callable[[Chemical, Decimal], ValidationResult],
    *,
    skip_zero: bool = False,
) -> list[_ValidLine]:
    """First pass over every line: collect every problem before anything is written."""
    pending = [line for line in lines if line.qty is not None]
    if skip_zero:
        pending = [line for line in pending if as_decimal(line.qty) != 0]
    chemicals = load_chemicals(db, (line.chemical_id for line in pending))

    errors: list[str] = []
    valid: list[_ValidLine] = []
    for line in pending:
        chemical = chemicals.get(line.chemical_id)
        if chemical is None:
            errors.append(f'Chemical {line.chemical_id} not found')
            continue
        if not chemical.active:
            errors.append(f'{chemical.name}: Chemical is inactive')
            continue
        qty = as_decimal(line.qty)
        result = validator(chemical, qty)
        if not result.valid:
            errors.append(f'{chemical.name}: {result.error}')
            continue
        if line.cost_per_unit is not None and as_decimal(line.cost_per_unit) < 0:
            errors.append(f'{chemical.name}: Cost per unit cannot be negative')
            continue
        valid.append(_ValidLine(chemical=chemical, qty=qty, cost_per_unit=line.cost_per_unit))

    if errors:
        logger.info('Rejected inventory write with %d invalid item(s)', len(errors))
        raise InventoryValidationError(errors)
    return valid


def lock_inventory_state(db: Session, chemical_id: int) -> InventoryState:
    state = db.execute(
        select(InventoryState).where(InventoryState.chemical_id == chemical_id).with_for_update()
    ).scalar_one_or_none()
    if state:
        return state
    state = InventoryState(chemical_id=chemical_id, shelf_qty=Decimal('0'), line_qty=Decimal('0'))
    db.add(state)
    db.flush()
    return state


def apply_pickup(
    db: Session,
    *,
    chemical: Chemical,
    qty: Decimal,
    note: str | None,
    batch_id: str,
    cost_per_unit: Decimal | None = None,
) -> tuple[ActivityLog, UsageHistory]:
    """Add whole purchase units to the shelf and write the matching log rows."""
    location = StockLocation.SHELF
    base_qty = to_base(chemical, qty)

    state = lock_inventory_state(db, chemical.id)
    state.shelf_qty = as_decimal(state.shelf_qty) + base_qty
    state.updated_at = utc_now()

    activity = ActivityLog(
        type=ActivityType.PICKUP,
        chemical_id=chemical.id,
        location=location,
        add_qty=qty,
        note=note,
        batch_id=batch_id,
    )
    total_cost = None
    if cost_per_unit is not None:
        cost_per_unit = as_decimal(cost_per_unit)
        total_cost = (cost_per_unit * qty).quantize(Decimal('0.01'))
    usage = UsageHistory(
        chemical_id=chemical.id,
        chemical_name=chemical.name,
        event_type=UsageEventType.PICKUP,
        quantity_gallons=base_qty,
        quantity_units=qty,
        unit=chemical.unit,
        location=location,
        cost_per_unit=cost_per_unit,
        total_cost=total_cost,
        note=note,
    )
    db.add_all([activity, usage])
    db.flush()
    return activity, usage


def create_pickup(db: Session, *, items: Iterable[QuantityLine], note: str | None = None) -> LedgerWriteResult:
    """Pickup: whole purchase units taken to the shelf. Nothing is written if any item is invalid."""
    valid = validate_lines(
        db,
        items,
        lambda chemical, qty: validate_whole(chemical, StockLocation.SHELF, qty),
        skip_zero=True,
    )
    if not valid:
        return LedgerWriteResult(batch_id=None)

    note = clean_note(note)
    result = LedgerWriteResult(batch_id=new_batch_id())
    for line in valid:
        activity, usage = apply_pickup(
            db,
            chemical=line.chemical,
            qty=line.qty,
            note=note,
            batch_id=result.batch_id,
            cost_per_unit=line.cost_per_unit,
        )
        result.activity_log_ids.append(activity.id)
        result.usage_history_ids.append(usage.id)
        result.chemical_ids.append(line.chemical.id)

    logger.info('Recorded pickup batch %s with %d item(s)', result.batch_id, len(valid))
    return result


def create_update(
    db: Session,
    *,
    items: Iterable[QuantityLine],
    location: StockLocation,
    note: str | None = None,
) -> LedgerWriteResult:
    """Update: set the gauge reading (base units) for one location. Corrections do not touch usage history."""
    valid = validate_lines(db, items, lambda chemical, qty: validate_absolute(chemical, location, qty))
    if not valid:
        return LedgerWriteResult(batch_id=None)

    note = clean_note(note)
    result = LedgerWriteResult(batch_id=new_batch_id())
    for line in valid:
        state = lock_inventory_state(db, line.chemical.id)
        if location == StockLocation.SHELF:
            state.shelf_qty = line.qty
        else:
            state.line_qty = line.qty
        state.updated_at = utc_now()

        activity = ActivityLog(
            type=ActivityType.UPDATE,
            chemical_id=line.chemical.id,
            location=location,
            set_qty=line.qty,
            note=note,
            batch_id=result.batch_id,
        )
        db.add(activity)
        db.flush()
        result.activity_log_ids.append(activity.id)
        result.chemical_ids.append(line.chemical.id)

    logger.info(
        'Recorded %s update batch %s with %d item(s)', location.value, result.batch_id, len(valid)
    )
    return result


def _format_qty(value: Decimal | None) -> str:
    if value is None:
        return ''
    normalized = as_decimal(value).normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal('1')))
    return format(normalized, 'f')


def _single_message(log: ActivityLog) -> str:
    name = log.chemical.name
    if log.type == ActivityType.PICKUP:
        return f'Picked up {_format_qty(log.add_qty)} {name} ({LOCATION_LABELS.get(log.location, "")})'
    if log.type == ActivityType.UPDATE:
        return f'Updated {name} {LOCATION_LABELS.get(log.location, "")} to {_format_qty(log.set_qty)}'
    if log.type == ActivityType.REQUEST:
        qty_text = f' ({_format_qty(log.request_qty)})' if log.request_qty else ''
        return f'Requested {name}{qty_text}'
    return f'{log.type.value} {name}'


def _group_message(logs: list[ActivityLog]) -> str:
    first = logs[0]
    if first.type == ActivityType.PICKUP:
        items = ', '.join(f'{log.chemical.name} ({_format_qty(log.add_qty)})' for log in logs)
        return f'Picked up chemicals: {items} ({LOCATION_LABELS.get(first.location, "")})'
    if first.type == ActivityType.UPDATE:
        items = ', '.join(f'{log.chemical.name} → {_format_qty(log.set_qty)}' for log in logs)
        return f'Updated inventory ({LOCATION_LABELS.get(first.location, "")}): {items}'
    if first.type == ActivityType.REQUEST:
        items = ', '.join(
            f'{log.chemical.name}' + (f' ({_format_qty(log.request_qty)})' if log.request_qty else '')
            for log in logs
        )
        return f'Requested: {items}'
    return f'{first.type.value}: ' + ', '.join(log.chemical.name for log in logs)


def list_recent_activity(db: Session, *, fetch_limit: int = 200, group_limit: int = 50) -> list[dict]:
    """Most recent activity, one item per batch (or per standalone log row), newest first."""
    logs = db.execute(
        select(ActivityLog)
        .options(selectinload(ActivityLog.chemical))
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(fetch_limit)
    ).scalars().all()

    groups: list[list[ActivityLog]] = []
    by_batch: dict[str, list[ActivityLog]] = {}
    for log in logs:
        if log.batch_id is None:
            groups.append([log])
            continue
        group = by_batch.get(log.batch_id)
        if group is None:
            group = []
            by_batch[log.batch_id] = group
            groups.append(group)
        group.append(log)

    results: list[dict] = []
    for group in groups[:group_limit]:
        # Rows come back newest first; show batch items in the order they were written.
        ordered = sorted(group, key=lambda log: log.id)
        first = ordered[0]
        results.append(
            {
                'id': first.id,
                'type': first.type.value,
                'batch_id': first.batch_id,
                'created_at': group[0].created_at,
                'message': _single_message(first) if len(ordered) == 1 else _group_message(ordered),
                'note': first.note,
                'log_ids': [log.id for log in ordered],
            }
        )
    return results


def get_activity_log_detail(db: Session, *, log_id: int) -> dict:
    log = db.execute(
        select(ActivityLog).options(selectinload(ActivityLog.chemical)).where(ActivityLog.id == log_id)
    ).scalar_one_or_none()
    if not log:
        raise NotFoundError('Activity log not found')

    detail: dict = {
        'id': log.id,
        'type': log.type.value,
        'chemical_name': log.chemical.name,
        'created_at': log.created_at,
    }
    if log.location:
        detail['location'] = log.location.value
    if log.set_qty is not None and log.set_qty > 0:
        detail['set_qty'] = log.set_qty
    if log.add_qty is not None and log.add_qty > 0:
        detail['add_qty'] = log.add_qty
    if log.request_qty is not None and log.request_qty > 0:
        detail['request_qty'] = log.request_qty
    if log.note:
        detail['note'] = log.note
    return detail
