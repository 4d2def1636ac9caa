import os
import sys
from pathlib import Path
from dotenv import load_dotenv

# .env lives next to the exe when frozen, else at the project root
if getattr(sys, "frozen", False):
    BASE_DIR = Path(sys.executable).parent
else:
    BASE_DIR = Path(__file__).resolve().parents[2]

load_dotenv(dotenv_path=BASE_DIR / ".env")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip() or raw.strip().lower() == "none":
        return default
    return int(raw)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


# ---------------------
# Database
# ---------------------
DB_HOST = os.getenv("DB_HOST", "127.0.0.1")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "receipt_ledger")
DB_USER = os.getenv("DB_USER", "ledger")
DB_PASS = os.getenv("DB_PASS", "ledger")

# Fix the None / empty / "None" port issue permanently
if not DB_PORT or str(DB_PORT).lower() == "none":
    DB_PORT = "5432"

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg2://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# ---------------------
# Currency
# ---------------------
CURRENCY_EXPONENT = _int_env("CURRENCY_EXPONENT", 2)
CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "₹")

# ---------------------
# Ledger behaviour
# ---------------------
# totalDebt at or below this many minor units counts as paid
LEDGER_PAID_EPSILON_MINOR = _int_env("LEDGER_PAID_EPSILON_MINOR", 1)
LEDGER_CONFLICT_MAX_ATTEMPTS = _int_env("LEDGER_CONFLICT_MAX_ATTEMPTS", 3)
LEDGER_CONFLICT_BACKOFF_SECONDS = _float_env("LEDGER_CONFLICT_BACKOFF_SECONDS", 0.05)

WALK_IN_CUSTOMER = "Walk-in Customer"

# ---------------------
# Server
# ---------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT = _int_env("SERVER_PORT", 5001)
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:8080,http://localhost:8081,http://127.0.0.1:8080,http://127.0.0.1:8081",
    ).split(",")
    if o.strip()
]
