"""
Runtime configuration, read from the environment at import time.

Every setting has a development default so the service starts against a
local PostgreSQL without extra setup.
"""
import os

# -- Database -----------------------------------------------------------------
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = int(os.getenv("DB_PORT", "5432"))
DB_NAME = os.getenv("DB_NAME", "votesecure")
DB_USER = os.getenv("DB_USER", "votesecure")
DB_PASSWORD = os.getenv("DB_PASSWORD", "votesecure")
DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "2"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "20"))

# -- Identity (bearer tokens are issued elsewhere, only verified here) --------
JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# -- External ledger oracle (optional) ----------------------------------------
LEDGER_ORACLE_URL = os.getenv("LEDGER_ORACLE_URL", "")
LEDGER_ORACLE_TIMEOUT = float(os.getenv("LEDGER_ORACLE_TIMEOUT", "5.0"))

# -- Logging ------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# -- HTTP ---------------------------------------------------------------------
SERVICE_HOST = os.getenv("SERVICE_HOST", "0.0.0.0")
SERVICE_PORT = int(os.getenv("SERVICE_PORT", "5003"))
