#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from models.lending_models import User


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create/update one Users record for an upstream identity directly from terminal.",
    )
    parser.add_argument("--external-id", required=True, help="Identity sent by the gateway in X-User-Id")
    parser.add_argument("--display-name", required=True, help="Name shown to the other party of a loan")
    parser.add_argument("--email", default=None, help="Optional contact email")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing lending tables before the upsert (local/dev databases).",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("TOOLSHARE_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to TOOLSHARE_DB_URL env var.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    external_id = args.external_id.strip()
    display_name = args.display_name.strip()
    if not external_id:
        parser.error("--external-id must not be blank")
    if not display_name:
        parser.error("--display-name must not be blank")
    if not args.db_url:
        parser.error("Missing DB URL. Set TOOLSHARE_DB_URL or pass --db-url.")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    if args.create_tables:
        Base.metadata.create_all(engine)

    now = datetime.now()
    with Session(engine, future=True) as db:
        user = db.execute(select(User).where(User.ExternalID == external_id)).scalars().first()
        created = user is None
        if created:
            user = User(ExternalID=external_id, ReputationScore=0, CreatedDate=now)
            db.add(user)
        user.DisplayName = display_name
        if args.email is not None:
            user.Email = args.email.strip() or None
        user.UpdatedDate = now
        db.commit()
        db.refresh(user)
        print(
            f"OK user_id={user.UserID} external_id={user.ExternalID} "
            f"created={created} reputation={user.ReputationScore}"
        )
    engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
