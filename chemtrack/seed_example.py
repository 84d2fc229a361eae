from chemtrack.db import SessionLocal, init_db
from chemtrack.services.chemical_catalog import upsert_catalog


def seed() -> tuple[int, int]:
    init_db()
    with SessionLocal() as db:
        created, existing = upsert_catalog(db)
        db.commit()
    return created, existing


if __name__ == '__main__':
    created, existing = seed()
    print(f'Seed data inserted/verified: {created} created, {existing} already present.')
