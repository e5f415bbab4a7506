import pytest
from sqlmodel import Session

from app.database import build_engine, create_db_and_tables
from app.db.models import Doctor


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'clinic.db'}")
    create_db_and_tables(eng)
    with Session(eng) as session:
        session.add(Doctor(id=1, name="Dr. Kamau", specialization="General", available_days='["Monday", "Friday"]'))
        session.commit()
    yield eng
    eng.dispose()
