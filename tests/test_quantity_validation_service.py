from __future__ import annotations

import unittest
from decimal import Decimal

from chemtrack.models import PurchaseUnit, StockLocation
from chemtrack.services.quantity_validation_service import (
    validate_absolute,
    validate_request_qty,
    validate_whole,
)
from tests.support import make_chemical


class ValidateAbsoluteTests(unittest.TestCase):
    def test_quarter_increment_accepts_multiples_and_rejects_others(self) -> None:
        bottles = make_chemical('Bottles', PurchaseUnit.BOX, '0.25', None, track_on_line=False)
        for qty in ['0', '0.25', '0.5', '0.75', '1.0', '4.25']:
            with self.subTest(qty=qty):
                self.assertTrue(validate_absolute(bottles, StockLocation.SHELF, Decimal(qty)).valid)

        result = validate_absolute(bottles, StockLocation.SHELF, Decimal('0.3'))
        self.assertFalse(result.valid)
        self.assertEqual(result.error, 'Quantity must be a multiple of 0.25 boxes')

    def test_gallon_items_use_tenth_gallon_steps(self) -> None:
        nova = make_chemical('Nova')
        self.assertTrue(validate_absolute(nova, StockLocation.LINE, Decimal('12.3')).valid)
        self.assertTrue(validate_absolute(nova, StockLocation.LINE, 0.3).valid)
        result = validate_absolute(nova, StockLocation.LINE, Decimal('12.35'))
        self.assertFalse(result.valid)
        self.assertEqual(result.error, 'Quantity must be a multiple of 0.1 gallons')

    def test_rejects_negative(self) -> None:
        result = validate_absolute(make_chemical('Nova'), StockLocation.SHELF, Decimal('-0.5'))
        self.assertFalse(result.valid)
        self.assertEqual(result.error, 'Quantity must be greater than or equal to 0')

    def test_rejects_untracked_location(self) -> None:
        bottles = make_chemical('Bottles', PurchaseUnit.BOX, '0.25', None, track_on_line=False)
        result = validate_absolute(bottles, StockLocation.LINE, Decimal('1'))
        self.assertFalse(result.valid)
        self.assertEqual(result.error, 'Location LINE is not allowed for this chemical')

    def test_whole_box_item_rejects_half(self) -> None:
        clean_kit = make_chemical('Clean Kit', PurchaseUnit.BOX, '1.0', None)
        self.assertTrue(validate_absolute(clean_kit, StockLocation.SHELF, Decimal('1')).valid)
        result = validate_absolute(clean_kit, StockLocation.SHELF, Decimal('0.5'))
        self.assertFalse(result.valid)
        self.assertEqual(result.error, 'Quantity must be a multiple of 1 box')


class ValidateWholeTests(unittest.TestCase):
    def test_accepts_non_negative_integers(self) -> None:
        nova = make_chemical('Nova')
        for qty in ['0', '1', '2', '15', '3.000']:
            with self.subTest(qty=qty):
                self.assertTrue(validate_whole(nova, StockLocation.SHELF, Decimal(qty)).valid)

    def test_rejects_fraction_and_negative(self) -> None:
        nova = make_chemical('Nova')
        fraction = validate_whole(nova, StockLocation.SHELF, Decimal('2.5'))
        negative = validate_whole(nova, StockLocation.SHELF, Decimal('-1'))
        self.assertEqual(fraction.error, 'Quantity must be a whole number')
        self.assertEqual(negative.error, 'Quantity must be greater than or equal to 0')

    def test_rejects_oversized_quantity(self) -> None:
        nova = make_chemical('Nova')
        self.assertTrue(validate_whole(nova, StockLocation.SHELF, Decimal('1000000')).valid)
        for validate in (
            lambda qty: validate_whole(nova, StockLocation.SHELF, qty),
            lambda qty: validate_absolute(nova, StockLocation.SHELF, qty),
            lambda qty: validate_request_qty(nova, qty),
        ):
            result = validate(Decimal('1e15'))
            self.assertFalse(result.valid)
            self.assertEqual(result.error, 'Quantity must be less than or equal to 1000000')

    def test_rejects_untracked_location(self) -> None:
        line_only = make_chemical('Line Soap', track_on_shelf=False, track_on_line=True)
        self.assertFalse(validate_whole(line_only, StockLocation.SHELF, Decimal('1')).valid)


class ValidateRequestQtyTests(unittest.TestCase):
    def test_bucket_uses_quarter_increment(self) -> None:
        rlc = make_chemical('RLC', PurchaseUnit.BUCKET, '1.0', '5')
        self.assertTrue(validate_request_qty(rlc, Decimal('1.25')).valid)
        result = validate_request_qty(rlc, Decimal('1.1'))
        self.assertFalse(result.valid)
        self.assertEqual(result.error, 'Quantity must be a multiple of 0.25')

    def test_other_units_use_configured_increment(self) -> None:
        nova = make_chemical('Nova', PurchaseUnit.BOX, '0.5', '5')
        self.assertTrue(validate_request_qty(nova, Decimal('1.5')).valid)
        self.assertFalse(validate_request_qty(nova, Decimal('1.25')).valid)

    def test_rejects_negative(self) -> None:
        self.assertFalse(validate_request_qty(make_chemical('Nova'), Decimal('-1')).valid)


if __name__ == '__main__':
    unittest.main()
