"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from secop_alerts.database.connection import Database
from secop_alerts.database.models import ProcurementItem, User
from secop_alerts.database.repository import UserRepository


class FakeClock:
    """Controllable replacement for utcnow()."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_record(process_id: str, **fields) -> dict:
    """Build a SECOP II record as returned by the open-data API."""
    record = {
        "id_del_proceso": process_id,
        "entidad": "ALCALDIA MAYOR DE BOGOTA",
        "ciudad_entidad": "Bogotá",
        "departamento_entidad": "Distrito Capital de Bogotá",
        "nombre_del_procedimiento": f"Mantenimiento de carreteras {process_id}",
        "descripci_n_del_procedimiento": "Obras de mantenimiento vial",
        "modalidad_de_contratacion": "Licitación Pública",
        "tipo_de_contrato": "Obra",
        "fase": "Presentación de oferta",
        "fecha_de_publicacion_del": "2026-10-01T00:00:00.000",
    }
    record.update(fields)
    return record


def make_items(*process_ids: str) -> list[ProcurementItem]:
    """Build ProcurementItems in the given order."""
    return [ProcurementItem(id=pid, record=make_record(pid)) for pid in process_ids]


def mock_response(data, status_code: int = 200) -> MagicMock:
    """A requests.Response stand-in returning ``data`` as JSON."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = data
    response.text = str(data)
    return response


@pytest.fixture
def db():
    """In-memory database with schema."""
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def clock():
    """Clock fixed at a known UTC instant."""
    return FakeClock(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def user(db):
    """A user with an Expo push token."""
    return UserRepository(db).create(
        User(
            id="user-1",
            email="contratista@example.com",
            push_token="ExponentPushToken[abc123]",
        )
    )


@pytest.fixture
def sample_expo_ok():
    """Expo push API success ticket."""
    return {"data": {"status": "ok", "id": "ticket-1"}}
