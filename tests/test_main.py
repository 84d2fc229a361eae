from __future__ import annotations

import asyncio
import unittest
from contextlib import suppress
from datetime import timedelta
from types import SimpleNamespace
from unittest import mock

from chemtrack.config import settings
from chemtrack.main import _retention_loop, lifespan


class RetentionLoopTests(unittest.TestCase):
    @mock.patch('chemtrack.main.run_retention_sweep')
    def test_sweeps_repeat_on_interval(self, sweep_mock) -> None:
        async def drive() -> None:
            task = asyncio.create_task(_retention_loop(timedelta(hours=12), 0.01))
            await asyncio.sleep(0.2)
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        asyncio.run(drive())

        self.assertGreater(sweep_mock.call_count, 1)
        self.assertEqual(sweep_mock.call_args.kwargs, {'max_age': timedelta(hours=12)})

    @mock.patch('chemtrack.main.run_retention_sweep')
    def test_zero_interval_sweeps_once(self, sweep_mock) -> None:
        asyncio.run(asyncio.wait_for(_retention_loop(timedelta(hours=12), 0), timeout=5))

        sweep_mock.assert_called_once()


class LifespanTests(unittest.TestCase):
    @mock.patch('chemtrack.main.run_retention_sweep')
    @mock.patch('chemtrack.main.init_db')
    def test_startup_backfills_mirror_and_sweeps(self, init_db_mock, sweep_mock) -> None:
        mirror = mock.Mock(enabled=True)
        fake_app = SimpleNamespace(state=SimpleNamespace(reporting_mirror=mirror))

        async def drive() -> None:
            async with lifespan(fake_app):
                await asyncio.sleep(0.1)

        with mock.patch.object(settings, 'auto_create_tables', False):
            asyncio.run(drive())

        init_db_mock.assert_not_called()
        mirror.backfill.assert_called_once_with()
        sweep_mock.assert_called()

    @mock.patch('chemtrack.main.run_retention_sweep')
    @mock.patch('chemtrack.main.init_db')
    def test_disabled_mirror_is_not_backfilled(self, init_db_mock, sweep_mock) -> None:
        mirror = mock.Mock(enabled=False)
        fake_app = SimpleNamespace(state=SimpleNamespace(reporting_mirror=mirror))

        async def drive() -> None:
            async with lifespan(fake_app):
                await asyncio.sleep(0.05)

        with mock.patch.object(settings, 'auto_create_tables', True):
            asyncio.run(drive())

        init_db_mock.assert_called_once_with()
        mirror.backfill.assert_not_called()


if __name__ == '__main__':
    unittest.main()
