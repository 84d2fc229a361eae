from __future__ import annotations

import unittest
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from sqlalchemy import func, select

from chemtrack.models import ActivityLog, ActivityType, StockLocation, UsageHistory, utc_now
from chemtrack.services.ledger_service import QuantityLine, create_pickup
from chemtrack.services.retention_service import purge_activity_logs_older_than, run_retention_sweep
from tests.support import DatabaseTestCase


class RetentionServiceTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.nova = self.add_chemical('Nova', shelf_qty='0')
        self.now = utc_now()

    def _add_log(self, age: timedelta) -> ActivityLog:
        log = ActivityLog(
            type=ActivityType.UPDATE,
            chemical_id=self.nova.id,
            location=StockLocation.SHELF,
            set_qty=Decimal('1'),
            created_at=self.now - age,
        )
        self.db.add(log)
        self.db.commit()
        return log

    def test_only_old_rows_are_deleted(self) -> None:
        self._add_log(timedelta(hours=13))
        recent = self._add_log(timedelta(hours=1))

        deleted = purge_activity_logs_older_than(self.db, max_age=timedelta(hours=12), now=self.now)
        self.db.commit()

        self.assertEqual(deleted, 1)
        remaining = self.db.execute(select(ActivityLog.id)).scalars().all()
        self.assertEqual(remaining, [recent.id])

    def test_usage_history_is_kept(self) -> None:
        create_pickup(self.db, items=[QuantityLine(chemical_id=self.nova.id, qty=Decimal('1'))])
        self.db.commit()

        purge_activity_logs_older_than(self.db, max_age=timedelta(hours=12), now=self.now + timedelta(days=2))
        self.db.commit()

        self.assertEqual(self.db.scalar(select(func.count()).select_from(ActivityLog)), 0)
        self.assertEqual(self.db.scalar(select(func.count()).select_from(UsageHistory)), 1)

    def test_sweep_commits_through_session_factory(self) -> None:
        self._add_log(timedelta(days=1))

        deleted = run_retention_sweep(self.Session, max_age=timedelta(hours=12))

        self.assertEqual(deleted, 1)
        self.db.expire_all()
        self.assertEqual(self.db.scalar(select(func.count()).select_from(ActivityLog)), 0)

    def test_sweep_failure_is_logged_not_raised(self) -> None:
        failing_factory = mock.Mock(side_effect=RuntimeError('database unavailable'))

        with self.assertLogs('chemtrack.services.retention_service', level='ERROR'):
            result = run_retention_sweep(failing_factory, max_age=timedelta(hours=12))

        self.assertIsNone(result)


if __name__ == '__main__':
    unittest.main()
