from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from chemtrack.models import ActivityLog, Chemical, InventoryState, UsageHistory
from chemtrack.services.errors import ExternalSinkError

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ['https://www.googleapis.com/auth/spreadsheets']


class EntityKind(str, Enum):
    CHEMICALS = 'chemicals'
    INVENTORY_STATE = 'inventory_state'
    ACTIVITY_LOG = 'activity_log'
    USAGE_HISTORY = 'usage_history'


SHEET_HEADERS: dict[EntityKind, list[str]] = {
    EntityKind.CHEMICALS: [
        'id', 'name', 'unit', 'increment', 'trackOnShelf', 'trackOnLine',
        'gallonsPerUnit', 'active', 'createdAt', 'updatedAt',
    ],
    EntityKind.INVENTORY_STATE: [
        'chemicalId', 'chemicalName', 'shelfQty', 'lineQty',
        'combinedQty', 'gallonsTotal', 'updatedAt',
    ],
    EntityKind.ACTIVITY_LOG: [
        'id', 'type', 'chemicalId', 'chemicalName', 'location',
        'setQty', 'addQty', 'requestQty', 'note', 'batchId', 'createdAt',
    ],
    EntityKind.USAGE_HISTORY: [
        'id', 'chemicalId', 'chemicalName', 'eventType', 'quantityGallons',
        'quantityUnits', 'unit', 'location', 'costPerUnit', 'totalCost',
        'note', 'recordedAt',
    ],
}


class SheetsBackend(Protocol):
    def update_values(self, range_: str, rows: list[list[Any]]) -> None: ...

    def clear_values(self, range_: str) -> None: ...

    def append_values(self, range_: str, rows: list[list[Any]]) -> None: ...


class SheetsClient:
    """Minimal Sheets v4 values API client. Calls are time-bounded and never retried."""

    def __init__(
        self,
        *,
        session: requests.Session,
        spreadsheet_id: str,
        base_url: str = 'https://sheets.googleapis.com',
        timeout_seconds: float = 10,
    ) -> None:
        self.session = session
        self.spreadsheet_id = spreadsheet_id
        self.base_url = base_url.rstrip('/')
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_service_account_file(
        cls,
        path: str,
        *,
        spreadsheet_id: str,
        base_url: str = 'https://sheets.googleapis.com',
        timeout_seconds: float = 10,
    ) -> SheetsClient:
        credentials = service_account.Credentials.from_service_account_file(path, scopes=SHEETS_SCOPES)
        return cls(
            session=AuthorizedSession(credentials),
            spreadsheet_id=spreadsheet_id,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )

    def _values_url(self, range_: str, suffix: str = '') -> str:
        return f'{self.base_url}/v4/spreadsheets/{self.spreadsheet_id}/values/{quote(range_, safe="")}{suffix}'

    def _request(self, method: str, url: str, *, params: dict | None = None, payload: dict | None = None) -> dict:
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=payload,
                timeout=self.timeout_seconds,
            )
        except (requests.RequestException, GoogleAuthError) as exc:
            raise ExternalSinkError(f'Sheets API network error on {url}: {exc}') from exc

        if response.status_code >= 400:
            raise ExternalSinkError(f'Sheets API error {response.status_code} on {url}: {response.text}')
        if not response.content:
            return {}
        return response.json()

    def update_values(self, range_: str, rows: list[list[Any]]) -> None:
        self._request(
            'PUT',
            self._values_url(range_),
            params={'valueInputOption': 'RAW'},
            payload={'range': range_, 'majorDimension': 'ROWS', 'values': rows},
        )

    def clear_values(self, range_: str) -> None:
        self._request('POST', self._values_url(range_, ':clear'), payload={})

    def append_values(self, range_: str, rows: list[list[Any]]) -> None:
        self._request(
            'POST',
            self._values_url(range_, ':append'),
            params={'valueInputOption': 'RAW', 'insertDataOption': 'INSERT_ROWS'},
            payload={'majorDimension': 'ROWS', 'values': rows},
        )


def cell(value: Any) -> Any:
    if value is None:
        return ''
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def chemical_row(chemical: Chemical) -> list[Any]:
    return [
        cell(value)
        for value in (
            chemical.id,
            chemical.name,
            chemical.unit,
            chemical.increment,
            chemical.track_on_shelf,
            chemical.track_on_line,
            chemical.gallons_per_unit,
            chemical.active,
            chemical.created_at,
            chemical.updated_at,
        )
    ]


def inventory_row(state: InventoryState) -> list[Any]:
    combined = state.shelf_qty + state.line_qty
    # Stored quantities are already gallons for converted chemicals.
    gallons_total = combined if state.chemical.gallons_per_unit is not None else None
    return [
        cell(value)
        for value in (
            state.chemical_id,
            state.chemical.name,
            state.shelf_qty,
            state.line_qty,
            combined,
            gallons_total,
            state.updated_at,
        )
    ]


def activity_row(log: ActivityLog) -> list[Any]:
    return [
        cell(value)
        for value in (
            log.id,
            log.type,
            log.chemical_id,
            log.chemical.name,
            log.location,
            log.set_qty,
            log.add_qty,
            log.request_qty,
            log.note,
            log.batch_id,
            log.created_at,
        )
    ]


def usage_row(record: UsageHistory) -> list[Any]:
    return [
        cell(value)
        for value in (
            record.id,
            record.chemical_id,
            record.chemical_name,
            record.event_type,
            record.quantity_gallons,
            record.quantity_units,
            record.unit,
            record.location,
            record.cost_per_unit,
            record.total_cost,
            record.note,
            record.recorded_at,
        )
    ]


class ReportingMirror:
    """Best-effort export of ledger state to a spreadsheet.

    With no backend configured every call is a no-op. Failures are logged and
    reported through the boolean return value; they never propagate.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        backend: SheetsBackend | None = None,
        usage_history_limit: int = 5000,
    ) -> None:
        self.session_factory = session_factory
        self.backend = backend
        self.usage_history_limit = usage_history_limit

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    def ensure_headers(self) -> bool:
        if not self.enabled:
            return False
        try:
            for kind, header in SHEET_HEADERS.items():
                self.backend.update_values(f'{kind.value}!A1', [header])
        except Exception:
            logger.exception('Failed to write spreadsheet headers')
            return False
        logger.info('Spreadsheet headers ensured')
        return True

    def backfill(self) -> bool:
        if not self.enabled:
            return False
        ok = self.ensure_headers()
        ok = self.push_full_snapshot(EntityKind.CHEMICALS) and ok
        ok = self.push_full_snapshot(EntityKind.INVENTORY_STATE) and ok
        return ok

    def _snapshot_rows(self, db: Session, kind: EntityKind) -> list[list[Any]]:
        if kind == EntityKind.CHEMICALS:
            rows = db.execute(select(Chemical).order_by(Chemical.name.asc())).scalars().all()
            return [chemical_row(row) for row in rows]
        if kind == EntityKind.INVENTORY_STATE:
            rows = db.execute(
                select(InventoryState)
                .options(selectinload(InventoryState.chemical))
                .order_by(InventoryState.chemical_id.asc())
            ).scalars().all()
            return [inventory_row(row) for row in rows]
        if kind == EntityKind.USAGE_HISTORY:
            rows = db.execute(
                select(UsageHistory)
                .order_by(UsageHistory.recorded_at.desc(), UsageHistory.id.desc())
                .limit(self.usage_history_limit)
            ).scalars().all()
            return [usage_row(row) for row in rows]
        rows = db.execute(
            select(ActivityLog)
            .options(selectinload(ActivityLog.chemical))
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        ).scalars().all()
        return [activity_row(row) for row in rows]

    def _incremental_row(self, db: Session, kind: EntityKind, entity_id: int) -> list[Any] | None:
        if kind == EntityKind.ACTIVITY_LOG:
            log = db.execute(
                select(ActivityLog).options(selectinload(ActivityLog.chemical)).where(ActivityLog.id == entity_id)
            ).scalar_one_or_none()
            return activity_row(log) if log else None
        if kind == EntityKind.USAGE_HISTORY:
            record = db.execute(select(UsageHistory).where(UsageHistory.id == entity_id)).scalar_one_or_none()
            return usage_row(record) if record else None
        if kind == EntityKind.CHEMICALS:
            chemical = db.execute(select(Chemical).where(Chemical.id == entity_id)).scalar_one_or_none()
            return chemical_row(chemical) if chemical else None
        state = db.execute(
            select(InventoryState)
            .options(selectinload(InventoryState.chemical))
            .where(InventoryState.chemical_id == entity_id)
        ).scalar_one_or_none()
        return inventory_row(state) if state else None

    def push_full_snapshot(self, kind: EntityKind) -> bool:
        if not self.enabled:
            return False
        kind = EntityKind(kind)
        try:
            with self.session_factory() as db:
                rows = self._snapshot_rows(db, kind)
            self.backend.clear_values(f'{kind.value}!A2:Z')
            if rows:
                self.backend.update_values(f'{kind.value}!A2', rows)
        except Exception:
            logger.exception('Failed to push %s snapshot to spreadsheet', kind.value)
            return False
        logger.info('Synced %d %s row(s) to spreadsheet', len(rows), kind.value)
        return True

    def push_incremental(self, kind: EntityKind, entity_id: int) -> bool:
        if not self.enabled:
            return False
        kind = EntityKind(kind)
        try:
            with self.session_factory() as db:
                row = self._incremental_row(db, kind, entity_id)
            if row is None:
                logger.warning('%s %s not found; nothing appended', kind.value, entity_id)
                return False
            self.backend.append_values(f'{kind.value}!A:A', [row])
        except Exception:
            logger.exception('Failed to append %s %s to spreadsheet', kind.value, entity_id)
            return False
        logger.info('Appended %s %s to spreadsheet', kind.value, entity_id)
        return True

    def push_ledger_write(self, *, activity_log_ids: list[int], usage_history_ids: list[int]) -> None:
        for log_id in activity_log_ids:
            self.push_incremental(EntityKind.ACTIVITY_LOG, log_id)
        for usage_id in usage_history_ids:
            self.push_incremental(EntityKind.USAGE_HISTORY, usage_id)
        if activity_log_ids or usage_history_ids:
            self.push_full_snapshot(EntityKind.INVENTORY_STATE)


def build_reporting_mirror(
    *,
    session_factory: Callable[[], Session],
    enabled: bool,
    service_account_json_path: str | None,
    spreadsheet_id: str | None,
    base_url: str = 'https://sheets.googleapis.com',
    timeout_seconds: float = 10,
    usage_history_limit: int = 5000,
) -> ReportingMirror:
    disabled = ReportingMirror(session_factory=session_factory, usage_history_limit=usage_history_limit)
    if not enabled:
        logger.info('Spreadsheet sync is disabled')
        return disabled
    if not service_account_json_path:
        logger.error('GOOGLE_SERVICE_ACCOUNT_JSON_PATH not set; spreadsheet sync disabled')
        return disabled
    if not spreadsheet_id:
        logger.error('GOOGLE_SHEET_ID not set; spreadsheet sync disabled')
        return disabled
    path = Path(service_account_json_path).resolve()
    if not path.exists():
        logger.error('Service account file not found: %s; spreadsheet sync disabled', path)
        return disabled

    try:
        client = SheetsClient.from_service_account_file(
            str(path),
            spreadsheet_id=spreadsheet_id,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )
    except (ValueError, OSError) as exc:
        logger.error('Could not load service account credentials: %s; spreadsheet sync disabled', exc)
        return disabled

    logger.info('Spreadsheet sync is enabled')
    return ReportingMirror(session_factory=session_factory, backend=client, usage_history_limit=usage_history_limit)
