from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from chemtrack.models import (
    ActivityLog,
    ActivityType,
    Chemical,
    RequestBatch,
    RequestBatchStatus,
    RequestItem,
    StockLocation,
    utc_now,
)
from chemtrack.services.errors import (
    InventoryValidationError,
    NotFoundError,
    OpenRequestConflictError,
    RequestBatchNotOpenError,
)
from chemtrack.services.ledger_service import (
    LedgerWriteResult,
    QuantityLine,
    apply_pickup,
    clean_note,
    new_batch_id,
    validate_lines,
)
from chemtrack.services.quantity_validation_service import ValidationResult, validate_request_qty, validate_whole
from chemtrack.services.unit_conversion_service import as_decimal, request_increment

logger = logging.getLogger(__name__)

BATCH_NOTE_PREFIX = 'RequestBatch:'


@dataclass
class FulfillmentResult:
    batch: RequestBatch
    ledger: LedgerWriteResult


def _positive_lines(lines: Iterable[QuantityLine]) -> list[QuantityLine]:
    return [line for line in lines if line.qty is not None and as_decimal(line.qty) > 0]


def _merge_by_chemical(lines: list[QuantityLine]) -> list[QuantityLine]:
    totals: dict[int, Decimal] = {}
    for line in lines:
        totals[line.chemical_id] = totals.get(line.chemical_id, Decimal('0')) + as_decimal(line.qty)
    return [QuantityLine(chemical_id=chemical_id, qty=qty) for chemical_id, qty in totals.items()]


def _validate_request_line(chemical: Chemical, qty: Decimal) -> ValidationResult:
    result = validate_request_qty(chemical, qty)
    if not result.valid:
        return result
    # Requests are fulfilled to the shelf in whole purchase units.
    return validate_whole(chemical, StockLocation.SHELF, qty)


def _latest_open_batch(db: Session) -> RequestBatch | None:
    return db.execute(
        select(RequestBatch)
        .where(RequestBatch.status == RequestBatchStatus.OPEN)
        .order_by(RequestBatch.created_at.desc(), RequestBatch.id.desc())
    ).scalars().first()


def create_request(
    db: Session,
    *,
    items: Iterable[QuantityLine],
    note: str | None = None,
) -> tuple[RequestBatch, ActivityLog]:
    lines = _merge_by_chemical(_positive_lines(items))
    valid = validate_lines(db, lines, _validate_request_line)
    if not valid:
        raise InventoryValidationError(['No valid items to request'])

    existing = _latest_open_batch(db)
    if existing:
        raise OpenRequestConflictError(f'Request batch {existing.id} is still open')

    note = clean_note(note)
    batch = RequestBatch(status=RequestBatchStatus.OPEN, note=note)
    batch.items = [RequestItem(chemical_id=line.chemical.id, requested_qty=line.qty) for line in valid]
    db.add(batch)
    try:
        db.flush()
    except IntegrityError as exc:
        raise OpenRequestConflictError('Another request batch is already open') from exc

    # REQUEST log rows hang off the first requested chemical; the note links back to the batch.
    first = valid[0]
    batch_ref = f'{BATCH_NOTE_PREFIX}{batch.id}'
    activity = ActivityLog(
        type=ActivityType.REQUEST,
        chemical_id=first.chemical.id,
        request_qty=first.qty,
        note=f'{batch_ref} - {note}' if note else batch_ref,
        batch_id=new_batch_id(),
    )
    db.add(activity)
    db.flush()

    logger.info('Opened request batch %s with %d item(s)', batch.id, len(valid))
    return batch, activity


def _item_rows(batch: RequestBatch) -> list[RequestItem]:
    return [item for item in batch.items if item.requested_qty > 0]


def get_open_request(db: Session) -> dict | None:
    batch = _latest_open_batch(db)
    if batch is None:
        return None
    return {
        'batch_id': batch.id,
        'created_at': batch.created_at,
        'note': batch.note,
        'items': [
            {
                'chemical_id': item.chemical_id,
                'chemical_name': item.chemical.name,
                'requested_qty': item.requested_qty,
                'picked_up_qty': item.picked_up_qty,
                'increment': request_increment(item.chemical),
                'unit': item.chemical.unit.value,
            }
            for item in _item_rows(batch)
        ],
    }


def get_request_batch(db: Session, *, batch_id: int) -> dict:
    batch = db.execute(
        select(RequestBatch)
        .options(selectinload(RequestBatch.items).selectinload(RequestItem.chemical))
        .where(RequestBatch.id == batch_id)
    ).scalar_one_or_none()
    if not batch:
        raise NotFoundError('Request batch not found')
    return {
        'batch_id': batch.id,
        'status': batch.status.value,
        'created_at': batch.created_at,
        'fulfilled_at': batch.fulfilled_at,
        'note': batch.note,
        'items': [
            {
                'chemical_id': item.chemical_id,
                'chemical_name': item.chemical.name,
                'requested_qty': item.requested_qty,
                'picked_up_qty': item.picked_up_qty or Decimal('0'),
            }
            for item in _item_rows(batch)
        ],
    }


def fulfill_request(
    db: Session,
    *,
    batch_id: int,
    pickups: Iterable[QuantityLine],
    note: str | None = None,
) -> FulfillmentResult:
    """Close an OPEN batch, taking requested and additional chemicals to the shelf."""
    batch = db.execute(
        select(RequestBatch).where(RequestBatch.id == batch_id).with_for_update()
    ).scalar_one_or_none()
    if not batch:
        raise NotFoundError('Request batch not found')
    if batch.status != RequestBatchStatus.OPEN:
        raise RequestBatchNotOpenError('Request batch is not open')

    valid = validate_lines(
        db,
        _positive_lines(pickups),
        lambda chemical, qty: validate_whole(chemical, StockLocation.SHELF, qty),
    )

    note = clean_note(note)
    requested = {item.chemical_id: item for item in batch.items}
    ledger = LedgerWriteResult(batch_id=new_batch_id() if valid else None)
    for line in valid:
        item = requested.get(line.chemical.id)
        prefix = 'Fulfilled from' if item else 'Picked up with'
        pickup_note = f'{prefix} {BATCH_NOTE_PREFIX}{batch.id}'
        if note:
            pickup_note = f'{pickup_note} - {note}'
        activity, usage = apply_pickup(
            db,
            chemical=line.chemical,
            qty=line.qty,
            note=pickup_note,
            batch_id=ledger.batch_id,
            cost_per_unit=line.cost_per_unit,
        )
        ledger.activity_log_ids.append(activity.id)
        ledger.usage_history_ids.append(usage.id)
        ledger.chemical_ids.append(line.chemical.id)
        if item:
            item.picked_up_qty = as_decimal(item.picked_up_qty or 0) + line.qty

    batch.status = RequestBatchStatus.FULFILLED
    batch.fulfilled_at = utc_now()
    db.flush()

    logger.info('Fulfilled request batch %s with %d pickup(s)', batch.id, len(valid))
    return FulfillmentResult(batch=batch, ledger=ledger)
