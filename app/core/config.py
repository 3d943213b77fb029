from dotenv import load_dotenv
import os
import re

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Polymarket Data API: positions, trades and server-side value
DATA_API_BASE = os.getenv("DATA_API_BASE", "https://data-api.polymarket.com").rstrip("/")

# Polygon JSON-RPC: USDC balanceOf(address) via eth_call
POLYGON_RPC_URL = os.getenv("POLYGON_RPC_URL", "https://polygon-rpc.com/")
USDC_CONTRACT = os.getenv("USDC_CONTRACT", "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174")
ERC20_BALANCE_OF_SELECTOR = "0x70a08231"
USDC_DECIMALS = int(os.getenv("USDC_DECIMALS", "6"))

# Transport timeout; the aggregator itself imposes no deadline
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))

POLL_MINUTES = float(os.getenv("POLL_MINUTES", "5"))
FETCH_TRADES = _env_bool("FETCH_TRADES", True)
TRADES_LIMIT = int(os.getenv("TRADES_LIMIT", "500"))

# Shared state store: "memory" for a single process, "redis" to share between processes
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory").lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")
REDIS_TIMEOUT_SECONDS = float(os.getenv("REDIS_TIMEOUT_SECONDS", "5"))
STORE_PREFIX = os.getenv("STORE_PREFIX", "tidview")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "86400"))

DEFAULT_OPEN_IN_POPUP = _env_bool("DEFAULT_OPEN_IN_POPUP", False)

ADDRESS_REGEX = re.compile(r"^0x[a-fA-F0-9]{40}$")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
