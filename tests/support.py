from __future__ import annotations

import unittest
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chemtrack.models import Base, Chemical, InventoryState, PurchaseUnit


def make_chemical(
    name: str = 'Nova',
    unit: PurchaseUnit = PurchaseUnit.BOX,
    increment: str = '0.5',
    gallons_per_unit: str | None = '5',
    *,
    track_on_shelf: bool = True,
    track_on_line: bool = True,
) -> SimpleNamespace:
    return SimpleNamespace(
        name=name,
        unit=unit,
        increment=Decimal(increment),
        gallons_per_unit=Decimal(gallons_per_unit) if gallons_per_unit is not None else None,
        track_on_shelf=track_on_shelf,
        track_on_line=track_on_line,
    )


def make_session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class DatabaseTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def add_chemical(
        self,
        name: str = 'Nova',
        unit: PurchaseUnit = PurchaseUnit.BOX,
        increment: str = '0.5',
        gallons_per_unit: str | None = '5',
        *,
        track_on_shelf: bool = True,
        track_on_line: bool = True,
        active: bool = True,
        shelf_qty: str | None = None,
        line_qty: str = '0',
    ) -> Chemical:
        chemical = Chemical(
            name=name,
            unit=unit,
            increment=Decimal(increment),
            gallons_per_unit=Decimal(gallons_per_unit) if gallons_per_unit is not None else None,
            track_on_shelf=track_on_shelf,
            track_on_line=track_on_line,
            active=active,
        )
        self.db.add(chemical)
        self.db.flush()
        if shelf_qty is not None:
            self.db.add(
                InventoryState(chemical_id=chemical.id, shelf_qty=Decimal(shelf_qty), line_qty=Decimal(line_qty))
            )
        self.db.commit()
        return chemical

    def inventory_for(self, chemical_id: int) -> InventoryState | None:
        self.db.expire_all()
        return self.db.execute(
            select(InventoryState).where(InventoryState.chemical_id == chemical_id)
        ).scalar_one_or_none()
