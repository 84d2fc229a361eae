from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from chemtrack.models import Chemical, InventoryState, PurchaseUnit

FIVE_GALLON_BOX_CHEMICALS = [
    'Nova',
    'Prizm Red',
    'Prizm Gold',
    'Prizm Blue',
    'Low PH Shampoo',
    'Silk',
    'Bubblicious',
    'Road Rage',
    'EZ Polish Red',
]

AIR_FRESHENER_SCENTS = ['Black Ice', 'Pina Colada', 'Cool Water', 'Berry Blast', 'New Car']


def _definition(
    name: str,
    unit: PurchaseUnit,
    increment: str,
    gallons_per_unit: str | None,
    *,
    track_on_shelf: bool = True,
    track_on_line: bool = True,
) -> dict:
    return {
        'name': name,
        'unit': unit,
        'increment': Decimal(increment),
        'gallons_per_unit': Decimal(gallons_per_unit) if gallons_per_unit is not None else None,
        'track_on_shelf': track_on_shelf,
        'track_on_line': track_on_line,
    }


CHEMICAL_DEFINITIONS: list[dict] = [
    _definition('Tire Shine', PurchaseUnit.BARREL, '0.25', '30'),
    _definition('Clean and Fresh Blast', PurchaseUnit.BOX, '1.0', '5'),
    # Counted in kits directly; no gallon conversion.
    _definition('Clean Kit', PurchaseUnit.BOX, '1.0', None),
    _definition('Glass Cleaner', PurchaseUnit.BUCKET, '1.0', '5'),
    _definition('RLC', PurchaseUnit.BUCKET, '1.0', '5'),
    *[_definition(name, PurchaseUnit.BOX, '0.5', '5') for name in FIVE_GALLON_BOX_CHEMICALS],
    *[
        _definition(f'Air Freshener - {scent}', PurchaseUnit.BOX, '0.25', None, track_on_line=False)
        for scent in AIR_FRESHENER_SCENTS
    ],
    _definition('Bottles', PurchaseUnit.BOX, '0.25', None, track_on_line=False),
    _definition('Bottle Triggers', PurchaseUnit.BOX, '0.25', None, track_on_line=False),
]

# None marks a visual group break on the dashboard.
DISPLAY_ORDER: list[str | None] = [
    'Clean Kit',
    'Nova',
    'Silk',
    'EZ Polish Red',
    'Low PH Shampoo',
    'Prizm Red',
    'Prizm Blue',
    'Prizm Gold',
    None,
    'Clean and Fresh Blast',
    'Tire Shine',
    'Road Rage',
    'Bubblicious',
    'Glass Cleaner',
    'RLC',
    None,
    'Air Freshener - Black Ice',
    'Air Freshener - New Car',
    'Air Freshener - Berry Blast',
    'Air Freshener - Pina Colada',
    'Air Freshener - Cool Water',
    None,
    'Bottles',
    'Bottle Triggers',
]

_DISPLAY_POSITION = {name: index for index, name in enumerate(DISPLAY_ORDER) if name}


def display_sort_key(name: str) -> tuple[int, int, str]:
    position = _DISPLAY_POSITION.get(name)
    if position is None:
        return (1, 0, name.lower())
    return (0, position, '')


def display_group_index(name: str) -> int | None:
    position = _DISPLAY_POSITION.get(name)
    if position is None:
        return None
    return DISPLAY_ORDER[:position].count(None)


def upsert_catalog(db: Session, definitions: list[dict] | None = None) -> tuple[int, int]:
    """Insert any missing chemicals by name. Existing rows are left untouched."""
    created = 0
    existing = 0
    for definition in definitions or CHEMICAL_DEFINITIONS:
        chemical = db.execute(select(Chemical).where(Chemical.name == definition['name'])).scalar_one_or_none()
        if chemical:
            existing += 1
            continue
        chemical = Chemical(**definition, active=True)
        db.add(chemical)
        db.flush()
        db.add(InventoryState(chemical_id=chemical.id, shelf_qty=Decimal('0'), line_qty=Decimal('0')))
        created += 1
    db.flush()
    return created, existing
