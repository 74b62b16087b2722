import os

from rental_ledger.db.engine import build_engine, build_session_factory


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


RENTAL_LEDGER_DB_URL = _require_env("RENTAL_LEDGER_DB_URL")

engine_ledger = build_engine(RENTAL_LEDGER_DB_URL, echo=_env_flag("RENTAL_LEDGER_SQL_ECHO"))

SessionLocalLedger = build_session_factory(engine_ledger)
