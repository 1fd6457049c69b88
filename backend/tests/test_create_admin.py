import uuid

import pytest
from sqlalchemy import select

from app.db.session import SessionLocal
from app.models.user import User, UserRole
from scripts.create_admin import run


def test_creates_admin():
    name = f"ops_{uuid.uuid4().hex[:8]}"
    run(name=name, password="adminpass123")

    with SessionLocal() as db:
        user = db.scalar(select(User).where(User.name == name))
        assert user is not None
        assert user.role == UserRole.admin


def test_promote_existing_learner(client, monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "allow_public_register", True)
    name = f"promo_{uuid.uuid4().hex[:8]}"
    assert client.post("/auth/register", json={"name": name, "password": "learner12345"}).status_code == 200

    with pytest.raises(SystemExit):
        run(name=name, password="adminpass123")

    run(name=name, password="adminpass123", promote_existing=True)
    r = client.post(
        "/auth/token",
        data={"username": name, "password": "adminpass123"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = r.json()["access_token"]
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()["role"] == "admin"


def test_short_password_refused():
    with pytest.raises(SystemExit):
        run(name="tiny", password="x")
