from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from chemtrack.db import get_db
from chemtrack.dependencies import get_reporting_mirror
from chemtrack.main import app
from chemtrack.models import PurchaseUnit
from chemtrack.services.reporting_mirror_service import ReportingMirror
from tests.support import DatabaseTestCase


class InventoryApiTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.nova = self.add_chemical('Nova', shelf_qty='10', line_qty='0')
        self.rlc = self.add_chemical('RLC', PurchaseUnit.BUCKET, '1.0', '5', shelf_qty='5')

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        mirror = ReportingMirror(session_factory=self.Session)
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_reporting_mirror] = lambda: mirror
        # No context manager: the lifespan (table creation, sweeper) stays off.
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        super().tearDown()

    def test_healthz(self) -> None:
        response = self.client.get('/healthz')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'ok': True})

    def test_dashboard(self) -> None:
        response = self.client.get('/api/dashboard')
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([row['name'] for row in body['chemicals']], ['Nova', 'RLC'])
        self.assertEqual(body['totals']['total_gallons'], 15.0)
        self.assertFalse(body['has_open_request'])

    def test_pickup_updates_shelf(self) -> None:
        response = self.client.post(
            '/pickup',
            json={'items': [{'chemical_id': self.nova.id, 'qty': '2', 'cost_per_unit': '40'}], 'note': 'truck'},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['ok'])
        self.assertEqual(len(body['activity_log_ids']), 1)
        self.assertEqual(float(self.inventory_for(self.nova.id).shelf_qty), 20.0)

        detail = self.client.get(f"/log/{body['activity_log_ids'][0]}").json()
        self.assertEqual(detail['type'], 'PICKUP')
        self.assertEqual(detail['note'], 'truck')

    def test_pickup_validation_error_lists_every_item(self) -> None:
        response = self.client.post(
            '/pickup',
            json={
                'items': [
                    {'chemical_id': self.nova.id, 'qty': '1.5'},
                    {'chemical_id': 999, 'qty': '1'},
                ]
            },
        )

        self.assertEqual(response.status_code, 400)
        detail = response.json()['detail']
        self.assertEqual(
            detail['errors'],
            ['Nova: Quantity must be a whole number', 'Chemical 999 not found'],
        )
        self.assertEqual(float(self.inventory_for(self.nova.id).shelf_qty), 10.0)

    def test_oversized_quantity_is_a_validation_error(self) -> None:
        response = self.client.post('/pickup', json={'items': [{'chemical_id': self.nova.id, 'qty': '1e15'}]})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()['detail']['errors'],
            ['Nova: Quantity must be less than or equal to 1000000'],
        )

    def test_update_sets_line(self) -> None:
        response = self.client.post(
            '/update',
            json={'location': 'LINE', 'items': [{'chemical_id': self.nova.id, 'qty': '12.0'}]},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(float(self.inventory_for(self.nova.id).line_qty), 12.0)

    def test_update_rejects_unknown_location(self) -> None:
        response = self.client.post(
            '/update',
            json={'location': 'BACKROOM', 'items': [{'chemical_id': self.nova.id, 'qty': '1'}]},
        )
        self.assertEqual(response.status_code, 422)

    def test_request_lifecycle(self) -> None:
        self.assertEqual(self.client.get('/requests/open').status_code, 404)

        created = self.client.post('/request', json={'items': [{'chemical_id': self.nova.id, 'qty': '3'}]})
        self.assertEqual(created.status_code, 200)
        batch_id = created.json()['batch_id']

        conflict = self.client.post('/request', json={'items': [{'chemical_id': self.rlc.id, 'qty': '1'}]})
        self.assertEqual(conflict.status_code, 409)

        open_request = self.client.get('/requests/open').json()
        self.assertEqual(open_request['batch_id'], batch_id)
        self.assertEqual(open_request['items'][0]['chemical_name'], 'Nova')

        fulfilled = self.client.post(
            '/requests/fulfill',
            json={'batch_id': batch_id, 'pickups': [{'chemical_id': self.nova.id, 'qty': '3'}]},
        )
        self.assertEqual(fulfilled.status_code, 200)
        self.assertEqual(fulfilled.json()['status'], 'FULFILLED')
        self.assertIsNotNone(fulfilled.json()['pickup_batch_id'])
        self.assertEqual(float(self.inventory_for(self.nova.id).shelf_qty), 25.0)

        again = self.client.post('/requests/fulfill', json={'batch_id': batch_id, 'pickups': []})
        self.assertEqual(again.status_code, 409)

        detail = self.client.get(f'/requests/{batch_id}').json()
        self.assertEqual(detail['status'], 'FULFILLED')
        self.assertEqual(detail['items'][0]['picked_up_qty'], 3.0)

    def test_request_with_nothing_to_request(self) -> None:
        response = self.client.post('/request', json={'items': [{'chemical_id': self.nova.id, 'qty': '0'}]})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail']['errors'], ['No valid items to request'])

    def test_missing_resources(self) -> None:
        self.assertEqual(self.client.get('/requests/4242').status_code, 404)
        self.assertEqual(self.client.get('/log/4242').status_code, 404)
        response = self.client.post('/requests/fulfill', json={'batch_id': 4242, 'pickups': []})
        self.assertEqual(response.status_code, 404)


if __name__ == '__main__':
    unittest.main()
