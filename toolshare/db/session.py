import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


TOOLSHARE_DB_URL = _require_env("TOOLSHARE_DB_URL")

engine_lending = create_engine(
    TOOLSHARE_DB_URL,
    pool_pre_ping=True,
    future=True,
)

SessionLocalLending = sessionmaker(
    bind=engine_lending,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
