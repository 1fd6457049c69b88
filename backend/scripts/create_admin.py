from __future__ import annotations

import argparse
import getpass
import os
import pathlib
import sys

from sqlalchemy import select

# Ensure imports work when running from any CWD and in Docker (/app)
_HERE = pathlib.Path(__file__).resolve()
_BACKEND_ROOT = _HERE.parents[1]
sys.path.insert(0, str(_BACKEND_ROOT))
sys.path.insert(0, "/app")
sys.path.insert(0, os.getcwd())

from app.core.config import settings
from app.db.session import SessionLocal
from app.models.user import User, UserRole
from app.routers.auth import hash_password


def run(*, name: str, password: str, promote_existing: bool = False) -> User:
    name = (name or "").strip()
    if not name:
        raise SystemExit("name is required")
    if len(password or "") < int(settings.password_min_length or 0):
        raise SystemExit(f"password must be at least {settings.password_min_length} characters")

    db = SessionLocal()
    try:
        user = db.scalar(select(User).where(User.name == name))
        if user is not None:
            if not promote_existing:
                raise SystemExit(f"user {name!r} already exists (use --promote to make it admin)")
            user.role = UserRole.admin
            user.password_hash = hash_password(password)
        else:
            user = User(name=name, role=UserRole.admin, password_hash=hash_password(password))
            db.add(user)
        db.commit()
        db.refresh(user)
        print(f"OK: admin {user.name} ({user.id})")
        return user
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def main() -> None:
    p = argparse.ArgumentParser(description="Create or promote an admin account")
    p.add_argument("--name", required=True)
    p.add_argument("--password", default=None, help="Prompted for when omitted")
    p.add_argument("--promote", action="store_true", help="Promote an existing user instead of failing")
    args = p.parse_args()

    password = args.password or getpass.getpass("password: ")
    run(name=args.name, password=password, promote_existing=bool(args.promote))


if __name__ == "__main__":
    main()
