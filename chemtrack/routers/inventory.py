from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from chemtrack.config import settings
from chemtrack.db import get_db
from chemtrack.dependencies import get_reporting_mirror
from chemtrack.models import StockLocation
from chemtrack.services.dashboard_service import get_dashboard_snapshot
from chemtrack.services.errors import (
    InventoryValidationError,
    NotFoundError,
    OpenRequestConflictError,
    RequestBatchNotOpenError,
)
from chemtrack.services.ledger_service import (
    LedgerWriteResult,
    QuantityLine,
    create_pickup,
    create_update,
    get_activity_log_detail,
)
from chemtrack.services.reporting_mirror_service import EntityKind, ReportingMirror
from chemtrack.services.request_service import (
    create_request,
    fulfill_request,
    get_open_request,
    get_request_batch,
)

router = APIRouter(tags=['inventory'])


class QuantityIn(BaseModel):
    chemical_id: int
    qty: Decimal | None = None


class PickupItemIn(QuantityIn):
    cost_per_unit: Decimal | None = Field(default=None, ge=0)


class PickupIn(BaseModel):
    items: list[PickupItemIn] = Field(default_factory=list)
    note: str | None = None


class UpdateIn(BaseModel):
    location: StockLocation
    items: list[QuantityIn] = Field(default_factory=list)
    note: str | None = None


class RequestIn(BaseModel):
    items: list[QuantityIn] = Field(default_factory=list)
    note: str | None = None


class FulfillIn(BaseModel):
    batch_id: int
    pickups: list[PickupItemIn] = Field(default_factory=list)
    note: str | None = None


def _lines(items: list[QuantityIn]) -> list[QuantityLine]:
    return [
        QuantityLine(chemical_id=item.chemical_id, qty=item.qty, cost_per_unit=getattr(item, 'cost_per_unit', None))
        for item in items
    ]


def _validation_response(exc: InventoryValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={'error': str(exc), 'errors': exc.errors})


def _ledger_payload(result: LedgerWriteResult) -> dict:
    return {
        'ok': True,
        'batch_id': result.batch_id,
        'activity_log_ids': result.activity_log_ids,
    }


def _schedule_ledger_sync(
    background_tasks: BackgroundTasks,
    mirror: ReportingMirror,
    result: LedgerWriteResult,
) -> None:
    if not mirror.enabled or result.batch_id is None:
        return
    background_tasks.add_task(
        mirror.push_ledger_write,
        activity_log_ids=list(result.activity_log_ids),
        usage_history_ids=list(result.usage_history_ids),
    )


@router.get('/healthz')
def healthz() -> dict:
    return {'ok': True}


@router.get('/api/dashboard')
def dashboard(db: Session = Depends(get_db)):
    return get_dashboard_snapshot(
        db,
        activity_fetch_limit=settings.recent_activity_fetch_limit,
        activity_group_limit=settings.recent_activity_group_limit,
        display_timezone=settings.display_timezone,
    )


@router.post('/pickup')
def pickup(
    payload: PickupIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    mirror: ReportingMirror = Depends(get_reporting_mirror),
):
    try:
        result = create_pickup(db, items=_lines(payload.items), note=payload.note)
    except InventoryValidationError as exc:
        raise _validation_response(exc) from exc
    db.commit()
    _schedule_ledger_sync(background_tasks, mirror, result)
    return _ledger_payload(result)


@router.post('/update')
def update(
    payload: UpdateIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    mirror: ReportingMirror = Depends(get_reporting_mirror),
):
    try:
        result = create_update(db, items=_lines(payload.items), location=payload.location, note=payload.note)
    except InventoryValidationError as exc:
        raise _validation_response(exc) from exc
    db.commit()
    _schedule_ledger_sync(background_tasks, mirror, result)
    return _ledger_payload(result)


@router.post('/request')
def request_chemicals(
    payload: RequestIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    mirror: ReportingMirror = Depends(get_reporting_mirror),
):
    try:
        batch, activity = create_request(db, items=_lines(payload.items), note=payload.note)
    except InventoryValidationError as exc:
        raise _validation_response(exc) from exc
    except OpenRequestConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    db.commit()
    if mirror.enabled:
        background_tasks.add_task(mirror.push_incremental, EntityKind.ACTIVITY_LOG, activity.id)
    return {'ok': True, 'batch_id': batch.id, 'activity_log_id': activity.id}


@router.get('/requests/open')
def open_request(db: Session = Depends(get_db)):
    detail = get_open_request(db)
    if detail is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={'batch_id': None})
    return detail


@router.get('/requests/{batch_id}')
def request_batch_detail(batch_id: int, db: Session = Depends(get_db)):
    try:
        return get_request_batch(db, batch_id=batch_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post('/requests/fulfill')
def fulfill(
    payload: FulfillIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    mirror: ReportingMirror = Depends(get_reporting_mirror),
):
    try:
        result = fulfill_request(db, batch_id=payload.batch_id, pickups=_lines(payload.pickups), note=payload.note)
    except RequestBatchNotOpenError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InventoryValidationError as exc:
        raise _validation_response(exc) from exc
    db.commit()
    _schedule_ledger_sync(background_tasks, mirror, result.ledger)
    return {
        'ok': True,
        'batch_id': result.batch.id,
        'status': result.batch.status.value,
        'fulfilled_at': result.batch.fulfilled_at,
        'pickup_batch_id': result.ledger.batch_id,
    }


@router.get('/log/{log_id}')
def activity_log_detail(log_id: int, db: Session = Depends(get_db)):
    try:
        return get_activity_log_detail(db, log_id=log_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
