"""Tests de la capa HTTP: autenticación, códigos de error y rutas principales."""
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from rotativos.core.security import create_access_token, hash_password
from rotativos.db.session import get_db
from rotativos.main import app

from conftest import weekdays


@pytest.fixture
def client(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def orchestra(factory):
    """Temporada lejana para que el reloj real nunca la deje en el pasado."""
    season = factory.season(start=date(2099, 1, 1), end=date(2099, 12, 31))
    admin = factory.user("Directora", role="ADMIN")
    members = [factory.user() for _ in range(3)]
    t = factory.titulo(season, name="Turandot", type="OPERA", start=date(2099, 3, 1), end=date(2099, 6, 30))
    events = factory.events(t, weekdays(date(2099, 3, 2), 20))
    return season, admin, members, t, events


def _auth(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id), 'role': user.role})}"}


class TestAuth:

    def test_health(self, client):
        assert client.get("/health").json()["ok"] is True

    def test_register_login_me(self, client):
        r = client.post("/api/v1/auth/register", json={
            "email": "Viola@Orquesta.com.ar", "password": "secreto123", "name": "Ana", "alias": "Anita",
        })
        assert r.status_code == 200
        r = client.post("/api/v1/auth/login", json={"email": "viola@orquesta.com.ar", "password": "secreto123"})
        token = r.json()["access_token"]
        me = client.get("/api/v1/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert (me["name"], me["alias"], me["role"]) == ("Ana", "Anita", "INTEGRANTE")

    def test_bad_password(self, client, factory):
        factory.user(email="cello@orquesta.com.ar", password_hash=hash_password("bien"))
        r = client.post("/api/v1/auth/login", json={"email": "cello@orquesta.com.ar", "password": "mal"})
        assert r.status_code == 401

    def test_requires_token(self, client):
        assert client.get("/api/v1/me").status_code == 401


class TestSolicitudes:

    def test_create_and_list(self, client, orchestra):
        season, admin, members, _, events = orchestra
        r = client.post("/api/v1/solicitudes", json={"event_id": events[0].id}, headers=_auth(members[0]))
        assert r.status_code == 200
        body = r.json()
        assert body["rotativo"]["estado"] == "APROBADO"
        assert body["verdict"]["requires_approval"] is False

        mine = client.get("/api/v1/solicitudes", headers=_auth(members[0])).json()
        assert [row["event_id"] for row in mine] == [events[0].id]
        others = client.get("/api/v1/solicitudes", headers=_auth(members[1])).json()
        assert others == []

    def test_validate_does_not_persist(self, client, orchestra):
        _, _, members, _, events = orchestra
        r = client.post("/api/v1/solicitudes/validar", json={"event_id": events[0].id}, headers=_auth(members[0]))
        assert r.status_code == 200
        assert client.get("/api/v1/solicitudes", headers=_auth(members[0])).json() == []

    def test_duplicate_is_409(self, client, orchestra):
        _, _, members, _, events = orchestra
        client.post("/api/v1/solicitudes", json={"event_id": events[0].id}, headers=_auth(members[0]))
        r = client.post("/api/v1/solicitudes", json={"event_id": events[0].id}, headers=_auth(members[0]))
        assert r.status_code == 409
        assert r.json()["retryable"] is False
        assert "Ya tenés un rotativo" in r.json()["detail"]

    def test_past_event_is_400(self, client, factory, orchestra):
        season, _, members, t, _ = orchestra
        old = factory.event(t, date(2000, 3, 1), evento_type="ENSAYO")
        r = client.post("/api/v1/solicitudes", json={"event_id": old.id}, headers=_auth(members[0]))
        assert r.status_code == 400

    def test_unknown_event_is_404(self, client, orchestra):
        _, _, members, _, _ = orchestra
        r = client.post("/api/v1/solicitudes", json={"event_id": 99999}, headers=_auth(members[0]))
        assert r.status_code == 404

    def test_member_cannot_approve(self, client, orchestra):
        _, _, members, _, events = orchestra
        rot = client.post("/api/v1/solicitudes", json={"event_id": events[0].id}, headers=_auth(members[0])).json()
        r = client.post(f"/api/v1/solicitudes/{rot['rotativo']['id']}/aprobar", headers=_auth(members[1]))
        assert r.status_code == 403

    def test_cancel(self, client, orchestra):
        _, _, members, _, events = orchestra
        rot = client.post("/api/v1/solicitudes", json={"event_id": events[3].id}, headers=_auth(members[0])).json()
        r = client.delete(f"/api/v1/solicitudes/{rot['rotativo']['id']}", headers=_auth(members[0]))
        assert r.status_code == 200
        assert r.json()["cancelacion_pendiente"] is False

    def test_candidates(self, client, orchestra):
        _, admin, members, _, events = orchestra
        r = client.get("/api/v1/solicitudes/candidatos", params={"event_id": events[0].id}, headers=_auth(admin))
        assert r.status_code == 200
        assert r.json()["criterio"] == "MENOS_ROTATIVOS"
        assert len(r.json()["candidatos"]) == 4


class TestRulesAndSeason:

    def test_rules_listing(self, client, orchestra):
        _, _, members, _, _ = orchestra
        rules = client.get("/api/v1/reglas", headers=_auth(members[0])).json()
        keys = [r["key"] for r in rules]
        assert "CUPO_DIARIO" in keys and "ALERTA_UMBRAL" in keys

    def test_invalid_rule_update_is_400(self, client, orchestra):
        _, admin, _, _, _ = orchestra
        r = client.put("/api/v1/reglas/alerta_umbral", json={"value": 0}, headers=_auth(admin))
        assert r.status_code == 400

    def test_rule_update_requires_admin(self, client, orchestra):
        _, _, members, _, _ = orchestra
        r = client.put("/api/v1/reglas/ALERTA_UMBRAL", json={"value": 80}, headers=_auth(members[0]))
        assert r.status_code == 403

    def test_rule_update(self, client, orchestra):
        _, admin, _, _, _ = orchestra
        r = client.put("/api/v1/reglas/ALERTA_UMBRAL", json={"value": 80}, headers=_auth(admin))
        assert r.status_code == 200
        assert r.json()["value"] == {"umbral": 80}

    def test_unknown_rule_is_404(self, client, orchestra):
        _, _, members, _, _ = orchestra
        assert client.get("/api/v1/reglas/NO_EXISTE", headers=_auth(members[0])).status_code == 404

    def test_season_summary(self, client, orchestra):
        _, admin, _, _, _ = orchestra
        r = client.get("/api/v1/temporada/resumen", headers=_auth(admin))
        assert r.status_code == 200
        # 20 ensayos de ópera (cupo 4) entre 4 usuarios
        assert r.json()["cupo_total"] == 80
        assert r.json()["max_por_integrante"] == 20

    def test_my_balance(self, client, orchestra):
        _, _, members, _, _ = orchestra
        r = client.get("/api/v1/me/balance", headers=_auth(members[0]))
        assert r.status_code == 200
        assert r.json()["max_efectivo"] == 20
        assert r.json()["alerta"]["nivel"] == "NINGUNA"
