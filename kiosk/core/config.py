import os
from decimal import Decimal

from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./kiosk.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local", "test"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

# Pricing
DEFAULT_TAX_RATE = Decimal(os.getenv("DEFAULT_TAX_RATE", "10"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "EUR").strip().upper()

# Receipt
RECEIPT_DIVIDER_WIDTH = int(os.getenv("RECEIPT_DIVIDER_WIDTH", "48"))

# Print relay (PrintNode compatible)
PRINT_RELAY_PROVIDER = os.getenv("PRINT_RELAY_PROVIDER", "printnode").strip().lower()
PRINT_RELAY_BASE_URL = os.getenv("PRINT_RELAY_BASE_URL", "https://api.printnode.com").rstrip("/")
PRINT_RELAY_TIMEOUT_SECONDS = float(os.getenv("PRINT_RELAY_TIMEOUT_SECONDS", "10"))
PRINT_RELAY_SOURCE = os.getenv("PRINT_RELAY_SOURCE", "Restaurant Kiosk")

# Spooler local
LOCAL_SPOOLER_ENABLED = _env_flag("LOCAL_SPOOLER_ENABLED", "1")
LOCAL_SPOOLER_COMMAND = os.getenv("LOCAL_SPOOLER_COMMAND", "").strip()
LOCAL_SPOOLER_SETTLE_SECONDS = float(os.getenv("LOCAL_SPOOLER_SETTLE_SECONDS", "0.5"))
LOCAL_SPOOLER_MEMORY = int(os.getenv("LOCAL_SPOOLER_MEMORY", "500"))
TICKETS_DIR = os.getenv("TICKETS_DIR", "tickets")

# Pagamento com cartão
PAYMENT_POLL_INTERVAL_SECONDS = float(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", "2"))
PAYMENT_POLL_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_POLL_TIMEOUT_SECONDS", "120"))

# Cofre de segredos remoto (opcional; sem URL usa a tabela restaurant_api_keys)
SECRETS_API_URL = os.getenv("SECRETS_API_URL", "").strip().rstrip("/")
SECRETS_API_TOKEN = os.getenv("SECRETS_API_TOKEN", "").strip()
SECRETS_API_TIMEOUT_SECONDS = float(os.getenv("SECRETS_API_TIMEOUT_SECONDS", "5"))
