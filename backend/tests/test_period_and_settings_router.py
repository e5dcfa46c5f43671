from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
from fastapi import FastAPI
from fastapi.testclient import TestClient

import spendwise.period as period_router
import spendwise.profile as profile_router
from spendwise.auth import hash_api_key
from spendwise.config import settings
from spendwise.services.period_calculator import PeriodConfig


def _access_token(user_id, token_type="access"):
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _app(*routers):
    app = FastAPI()
    for router in routers:
        app.include_router(router)

    async def override_db():
        yield object()

    app.dependency_overrides[period_router.get_db_connection] = override_db
    return app


def _profile_store(monkeypatch, start_day=25, end_day=24, last_checked=None):
    profile = {"start_day": start_day, "end_day": end_day, "last_checked_period": last_checked}

    async def fake_ensure(connection, uid):
        return dict(profile)

    async def fake_mark(connection, uid, key):
        profile["last_checked_period"] = key

    monkeypatch.setattr(period_router, "ensure_profile", fake_ensure)
    monkeypatch.setattr(period_router, "mark_period_checked", fake_mark)
    return profile


def test_current_period_with_real_bearer_token(monkeypatch) -> None:
    user_id = uuid4()
    app = _app(period_router.router)
    _profile_store(monkeypatch)
    monkeypatch.setattr(period_router, "local_now", lambda: datetime(2024, 3, 10, 9, 0))

    with TestClient(app) as client:
        response = client.get("/period/current", headers={"Authorization": f"Bearer {_access_token(user_id)}"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["start"] == "2024-02-25T00:00:00"
    assert payload["end"] == "2024-03-24T23:59:59.999000"
    assert payload["label"] == "Feb 25 - Mar 24"
    assert payload["label_with_year"] == "Feb 25 - Mar 24, 2024"
    assert payload["key"] == "2024-02-25"
    assert payload["is_new_period"] is True


def test_refresh_token_is_not_accepted(monkeypatch) -> None:
    app = _app(period_router.router)
    _profile_store(monkeypatch)

    with TestClient(app) as client:
        response = client.get(
            "/period/current",
            headers={"Authorization": f"Bearer {_access_token(uuid4(), token_type='refresh')}"},
        )

    assert response.status_code == 401


def test_acknowledge_clears_new_period_flag_until_next_period(monkeypatch) -> None:
    user_id = uuid4()
    app = _app(period_router.router)
    app.dependency_overrides[period_router.get_current_user_id] = lambda: user_id
    _profile_store(monkeypatch)
    clock = {"now": datetime(2024, 3, 10, 9, 0)}
    monkeypatch.setattr(period_router, "local_now", lambda: clock["now"])

    with TestClient(app) as client:
        ack = client.post("/period/acknowledge")
        same_period = client.get("/period/current")
        clock["now"] = datetime(2024, 3, 25, 0, 0)
        next_period = client.get("/period/current")

    assert ack.json() == {"key": "2024-02-25"}
    assert same_period.json()["is_new_period"] is False
    assert next_period.json()["is_new_period"] is True
    assert next_period.json()["key"] == "2024-03-25"


def test_update_period_settings_rejects_out_of_range(monkeypatch) -> None:
    user_id = uuid4()
    app = _app(profile_router.router)
    app.dependency_overrides[profile_router.get_current_user_id] = lambda: user_id

    async def fake_update(connection, uid, start_day, end_day):
        raise ValueError("start_day must be between 1 and 31")

    monkeypatch.setattr(profile_router, "update_period_config", fake_update)

    with TestClient(app) as client:
        response = client.put("/settings/period", json={"start_day": 0, "end_day": 24})

    assert response.status_code == 422
    assert response.json()["detail"] == "start_day must be between 1 and 31"


def test_update_period_settings_success(monkeypatch) -> None:
    user_id = uuid4()
    app = _app(profile_router.router)
    app.dependency_overrides[profile_router.get_current_user_id] = lambda: user_id

    async def fake_update(connection, uid, start_day, end_day):
        return PeriodConfig(start_day, end_day)

    monkeypatch.setattr(profile_router, "update_period_config", fake_update)

    with TestClient(app) as client:
        response = client.put("/settings/period", json={"start_day": 1, "end_day": 31})

    assert response.status_code == 200
    assert response.json() == {"start_day": 1, "end_day": 31}


def test_rotate_api_key_stores_only_the_hash(monkeypatch) -> None:
    user_id = uuid4()
    app = _app(profile_router.router)
    app.dependency_overrides[profile_router.get_current_user_id] = lambda: user_id
    stored = {}

    async def fake_set(connection, uid, key_hash):
        stored[uid] = key_hash

    monkeypatch.setattr(profile_router, "set_api_key_hash", fake_set)

    with TestClient(app) as client:
        response = client.post("/settings/api-key")

    assert response.status_code == 201
    api_key = response.json()["api_key"]
    assert api_key.startswith("sw_")
    assert response.json()["prefix"] == api_key[:8]
    assert stored[user_id] == hash_api_key(api_key)
    assert api_key not in stored.values()
