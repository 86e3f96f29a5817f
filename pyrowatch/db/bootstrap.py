from __future__ import annotations

from sqlalchemy.orm import Session

from pyrowatch.db.engine import SessionLocal, engine
from pyrowatch.db.models import Base
from pyrowatch.db.queries import get_location_by_location_id, upsert_location
from pyrowatch.services.locations import SAMPLE_LOCATIONS


def seed_locations(db: Session) -> None:
    for sample in SAMPLE_LOCATIONS:
        if get_location_by_location_id(db, sample.location_id) is not None:
            continue
        upsert_location(
            db,
            location_id=sample.location_id,
            name=sample.name,
            lat=sample.lat,
            lon=sample.lon,
            description=sample.description,
            region=sample.region,
            location_type=sample.location_type,
            intensity=sample.intensity,
            radius_m=sample.radius_m,
        )


def init_db(reset_db: bool) -> None:
    if reset_db:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        seed_locations(db)
    finally:
        db.close()
