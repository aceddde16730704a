import os
import secrets
from dotenv import load_dotenv

# load .env file (once, at import time)
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


# empty => in-memory storage
DATABASE_URL = os.getenv("DATABASE_URL", "")
CREATE_TABLES_ON_STARTUP = _env_flag("CREATE_TABLES_ON_STARTUP", "true")

SESSION_SECRET = os.getenv("SESSION_SECRET") or secrets.token_hex(32)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", 7 * 24 * 60 * 60))

ISSUER_URL = os.getenv("ISSUER_URL", "https://replit.com/oidc")
OIDC_CLIENT_ID = os.getenv("OIDC_CLIENT_ID", "")
OIDC_CLIENT_SECRET = os.getenv("OIDC_CLIENT_SECRET", "")

BYBIT_PARTNER_CODE = os.getenv("BYBIT_PARTNER_CODE", "119776")

HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", 8000))

PRODUCTION = _env_flag("PRODUCTION")
