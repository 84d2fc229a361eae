from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from chemtrack.models import (
    ActivityLog,
    ActivityType,
    Chemical,
    InventoryState,
    PurchaseUnit,
    RequestBatch,
    RequestBatchStatus,
)
from chemtrack.services.chemical_catalog import display_group_index, display_sort_key
from chemtrack.services.ledger_service import list_recent_activity
from chemtrack.services.low_inventory_service import build_low_inventory_report
from chemtrack.services.unit_conversion_service import (
    allowed_increment,
    allowed_locations,
    format_quantity,
    to_purchase_units,
)

ZERO = Decimal('0')


def _quantities(chemical: Chemical) -> tuple[Decimal, Decimal]:
    if chemical.inventory is None:
        return ZERO, ZERO
    return chemical.inventory.shelf_qty, chemical.inventory.line_qty


def list_active_chemicals(db: Session) -> list[Chemical]:
    chemicals = db.execute(
        select(Chemical).options(selectinload(Chemical.inventory)).where(Chemical.active.is_(True))
    ).scalars().all()
    return sorted(chemicals, key=lambda chemical: display_sort_key(chemical.name))


def chemical_rows(chemicals: list[Chemical]) -> list[dict]:
    rows = []
    for chemical in chemicals:
        shelf_qty, line_qty = _quantities(chemical)
        combined = shelf_qty + line_qty
        increment = allowed_increment(chemical)
        rows.append(
            {
                'id': chemical.id,
                'name': chemical.name,
                'unit': chemical.unit.value,
                'gallons_per_unit': chemical.gallons_per_unit,
                'display_group': display_group_index(chemical.name),
                'allowed_locations': [location.value for location in allowed_locations(chemical)],
                'shelf_increment': increment,
                'line_increment': increment if chemical.track_on_line else None,
                'shelf_qty': shelf_qty,
                'line_qty': line_qty,
                'combined_qty': combined,
                'shelf_units': to_purchase_units(chemical, shelf_qty),
                'line_units': to_purchase_units(chemical, line_qty),
                'combined_units': to_purchase_units(chemical, combined),
                'shelf_qty_display': format_quantity(chemical, shelf_qty),
                'line_qty_display': format_quantity(chemical, line_qty) if chemical.track_on_line else 'N/A',
                'combined_qty_display': format_quantity(chemical, combined),
            }
        )
    return rows


def compute_totals(chemicals: list[Chemical]) -> dict[str, Decimal]:
    totals = {
        'total_gallons': ZERO,
        'total_boxes': ZERO,
        'total_barrels': ZERO,
        'total_buckets': ZERO,
    }
    unit_keys = {
        PurchaseUnit.BOX: 'total_boxes',
        PurchaseUnit.BARREL: 'total_barrels',
        PurchaseUnit.BUCKET: 'total_buckets',
    }
    for chemical in chemicals:
        shelf_qty, line_qty = _quantities(chemical)
        combined = shelf_qty + line_qty
        if chemical.gallons_per_unit is not None:
            totals['total_gallons'] += combined
        totals[unit_keys[chemical.unit]] += to_purchase_units(chemical, combined)
    return {key: value.quantize(Decimal('0.1')) for key, value in totals.items()}


def low_inventory_rows(chemicals: list[Chemical]) -> list[dict]:
    alerts = build_low_inventory_report((chemical, *_quantities(chemical)) for chemical in chemicals)
    by_name = {chemical.name: chemical for chemical in chemicals}
    return [
        {
            'chemical_name': alert.chemical_name,
            'unit': alert.unit.value,
            'rule': alert.rule_key,
            'location': alert.location.value,
            'threshold': alert.threshold,
            'threshold_in_base': alert.threshold_in_base,
            'current': alert.current,
            'current_display': format_quantity(by_name[alert.chemical_name], alert.current),
        }
        for alert in alerts
    ]


def get_last_updated_at(db: Session) -> datetime | None:
    last = db.execute(select(func.max(InventoryState.updated_at))).scalar_one_or_none()
    if last:
        return last
    return db.execute(
        select(func.max(ActivityLog.created_at)).where(
            ActivityLog.type.in_([ActivityType.PICKUP, ActivityType.UPDATE])
        )
    ).scalar_one_or_none()


def format_last_updated(value: datetime | None, *, now: datetime | None = None, tz_name: str = 'UTC') -> str:
    if value is None:
        return '—'
    zone = ZoneInfo(tz_name)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    local = value.astimezone(zone)
    today = (now or datetime.now(tz=timezone.utc)).astimezone(zone).date()

    time_str = local.strftime('%I:%M %p').lstrip('0')
    if local.date() == today:
        return f'Today at {time_str}'
    if local.date() == today - timedelta(days=1):
        return f'Yesterday at {time_str}'
    return f'{local.strftime("%b")} {local.day} at {time_str}'


def get_open_request_batch_id(db: Session) -> int | None:
    return db.execute(
        select(RequestBatch.id)
        .where(RequestBatch.status == RequestBatchStatus.OPEN)
        .order_by(RequestBatch.created_at.desc(), RequestBatch.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def get_dashboard_snapshot(
    db: Session,
    *,
    activity_fetch_limit: int = 200,
    activity_group_limit: int = 50,
    display_timezone: str = 'UTC',
    now: datetime | None = None,
) -> dict:
    chemicals = list_active_chemicals(db)
    low_inventory = low_inventory_rows(chemicals)
    last_updated_at = get_last_updated_at(db)
    open_batch_id = get_open_request_batch_id(db)
    return {
        'chemicals': chemical_rows(chemicals),
        'totals': compute_totals(chemicals),
        'recent_activity': list_recent_activity(
            db, fetch_limit=activity_fetch_limit, group_limit=activity_group_limit
        ),
        'low_inventory': low_inventory,
        'has_low_inventory': bool(low_inventory),
        'open_request_batch_id': open_batch_id,
        'has_open_request': open_batch_id is not None,
        'last_updated_at': last_updated_at,
        'last_updated_display': format_last_updated(last_updated_at, now=now, tz_name=display_timezone),
    }
