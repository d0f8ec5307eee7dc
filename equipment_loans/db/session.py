import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _env_flag(name: str) -> bool:
    return str(os.environ.get(name, "")).strip().lower() in {"1", "true", "yes", "on"}


LOAN_DB_URL = _require_env("LOAN_DB_URL")

engine_loans = create_engine(
    LOAN_DB_URL,
    pool_pre_ping=True,
    echo=_env_flag("LOAN_SQL_ECHO"),
    future=True,
)

SessionLocalLoans = sessionmaker(
    bind=engine_loans,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
