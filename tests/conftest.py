"""
Fixtures compartilhadas.

O banco de teste é um SQLite temporário; as variáveis de ambiente precisam
estar definidas antes do primeiro import de `convenio` (config é lido no import).
"""

import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="convenio-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.sqlite'}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["CIVIL_UTC_OFFSET_HOURS"] = "-3"
os.environ["MAX_OCCURRENCES"] = "100"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from convenio.auth_service import SessionContext, register_user  # noqa: E402
from convenio.db import Base, engine  # noqa: E402
from convenio.models import Role  # noqa: E402
from convenio.services import (  # noqa: E402
    create_dependent,
    create_private_patient,
    create_service,
    set_subscription,
)


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture(autouse=True)
def clean_db():
    """Banco vazio a cada teste."""
    from convenio import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


# ============================================================================
# DATA
# ============================================================================


def make_session(user_id: int, role: Role, roles: tuple[Role, ...] | None = None) -> SessionContext:
    return SessionContext(user_id=user_id, name="Teste", roles=roles or (role,), current_role=role)


@pytest.fixture
def professional_id() -> int:
    return register_user("Dra. Ana", "111.111.111-11", "segredo1", phone="11911112222", roles=[Role.PROFESSIONAL])


@pytest.fixture
def other_professional_id() -> int:
    return register_user("Dr. Bruno", "22222222222", "segredo1", roles=[Role.PROFESSIONAL])


@pytest.fixture
def client_id() -> int:
    uid = register_user("Carlos Cliente", "33333333333", "segredo1", phone="(11) 97777-6666")
    set_subscription(uid, "active")
    return uid


@pytest.fixture
def dependent_id(client_id: int) -> int:
    dep = create_dependent(client_id, "Duda Dependente", "44444444444")
    set_subscription(client_id, "active", dependent_id=dep)
    return dep


@pytest.fixture
def service_id() -> int:
    return create_service("Consulta Fisioterapêutica", "80.00")


@pytest.fixture
def private_patient_id(professional_id: int) -> int:
    return create_private_patient(professional_id, "Paula Particular", phone="(11) 98888-7777")


@pytest.fixture
def professional_session(professional_id: int) -> SessionContext:
    return make_session(professional_id, Role.PROFESSIONAL)


@pytest.fixture
def admin_session() -> SessionContext:
    uid = register_user("Admin", "55555555555", "segredo1", roles=[Role.ADMIN])
    return make_session(uid, Role.ADMIN)


# ============================================================================
# API
# ============================================================================


@pytest.fixture
def api_client() -> TestClient:
    """TestClient sem o evento de startup (as tabelas já vêm do clean_db)."""
    from convenio.api_main import app

    return TestClient(app)


@pytest.fixture
def login_token(api_client: TestClient):
    def _login(cpf: str, password: str = "segredo1", role: str | None = None) -> str:
        r = api_client.post("/api/auth/login", json={"cpf": cpf, "password": password})
        assert r.status_code == 200, r.text
        data = r.json()
        if not data["needs_role_selection"]:
            return data["token"]
        r = api_client.post(
            "/api/auth/select-role",
            json={"user_id": data["user"]["id"], "role": role},
            headers={"Authorization": f"Bearer {data['selection_token']}"},
        )
        assert r.status_code == 200, r.text
        return r.json()["token"]

    return _login
