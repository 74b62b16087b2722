#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import secrets
from datetime import datetime

from sqlalchemy import func, select

from rental_ledger.db.base import Base
from rental_ledger.db.engine import build_engine, build_session_factory
from rental_ledger.models.ledger_models import User
from rental_ledger.services.user_service import MIN_PASSWORD_LENGTH, password_hash


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create the rental ledger tables and a default admin account.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_LEDGER_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_LEDGER_DB_URL env var.",
    )
    parser.add_argument("--admin-username", default="admin", help="Username for the bootstrap admin.")
    parser.add_argument(
        "--admin-password",
        default="admin",
        help="Password for the bootstrap admin. Only used when the users table is empty.",
    )
    return parser


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    if not args.db_url:
        parser.error("Missing DB URL. Set RENTAL_LEDGER_DB_URL or pass --db-url.")
    if len(args.admin_password.strip()) < MIN_PASSWORD_LENGTH:
        parser.error(f"--admin-password must be at least {MIN_PASSWORD_LENGTH} characters.")

    engine = build_engine(args.db_url)
    Base.metadata.create_all(engine)
    SessionLocal = build_session_factory(engine)

    with SessionLocal() as db:
        user_count = db.execute(select(func.count(User.id))).scalar_one()
        if user_count:
            print(f"OK tables ready; {user_count} user(s) already present, admin not created")
            return 0
        salt = secrets.token_hex(16)
        db.add(
            User(
                username=args.admin_username.strip(),
                password_hash=password_hash(args.admin_password.strip(), salt),
                password_salt=salt,
                role="admin",
                created_at=datetime.now(),
            )
        )
        db.commit()

    print(f"OK tables ready; admin user '{args.admin_username.strip()}' created")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
