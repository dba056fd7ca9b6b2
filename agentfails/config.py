# agentfails/config.py
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# -----------------------------------------------------------------------------
# Defaults (Base mainnet)
# -----------------------------------------------------------------------------

BASE_RPC_URL = "https://mainnet.base.org"
USDC_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
USDC_DECIMALS = 6
PAYMENT_COLLECTOR = "0x615e3faa99dd7de64812128a953215a09509f16a"
SIGNUP_USDC_AMOUNT = 2_000_000      # $2.00 USDC (6 decimals)
ANONS_NFT_ADDRESS = "0x1ad890FCE6cB865737A3411E7d04f1F5668b0686"

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _truthy(name: str) -> bool:
    v = os.getenv(name, "")
    return v not in ("", "0", "false", "False", "no", "No")


def _address_env(name: str, default: str) -> str:
    """Read a contract/wallet address from env; a bad value stops startup."""
    v = os.getenv(name, default).strip()
    if not ADDRESS_RE.match(v):
        raise ValueError(f"{name} must be a 0x-prefixed 20-byte hex address, got {v!r}")
    return v


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration. Built once at startup, passed by reference."""

    rpc_url: str = BASE_RPC_URL
    rpc_timeout: float = 10.0
    receipt_poll_attempts: int = 1
    receipt_poll_interval: float = 2.0

    usdc_address: str = USDC_ADDRESS
    usdc_decimals: int = USDC_DECIMALS
    payment_collector: str = PAYMENT_COLLECTOR
    signup_usdc_amount: int = SIGNUP_USDC_AMOUNT
    payment_currency: str = "USDC"
    anons_nft_address: str = ANONS_NFT_ADDRESS

    database_url: str = ""

    jwt_secret: str = "dev-secret"
    jwt_expire_min: int = 43200      # ~30 days
    admin_email: str = "admin@example.com"
    admin_password_hash: str = ""
    admin_password: str = ""

    frontend_origin: str = ""
    is_prod: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            rpc_url=os.getenv("BASE_RPC_URL", BASE_RPC_URL),
            rpc_timeout=float(os.getenv("RPC_TIMEOUT_SECONDS", "10")),
            receipt_poll_attempts=max(1, int(os.getenv("RECEIPT_POLL_ATTEMPTS", "1"))),
            receipt_poll_interval=float(os.getenv("RECEIPT_POLL_INTERVAL", "2.0")),
            usdc_address=_address_env("USDC_ADDRESS", USDC_ADDRESS),
            usdc_decimals=int(os.getenv("USDC_DECIMALS", str(USDC_DECIMALS))),
            payment_collector=_address_env("PAYMENT_COLLECTOR", PAYMENT_COLLECTOR),
            signup_usdc_amount=int(os.getenv("SIGNUP_USDC_AMOUNT", str(SIGNUP_USDC_AMOUNT))),
            anons_nft_address=_address_env("ANONS_NFT_ADDRESS", ANONS_NFT_ADDRESS),
            database_url=os.getenv("DATABASE_URL", ""),
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
            jwt_expire_min=int(os.getenv("JWT_EXPIRE_MIN", "43200")),
            admin_email=os.getenv("ADMIN_EMAIL", "admin@example.com"),
            admin_password_hash=os.getenv("ADMIN_PASSWORD_HASH", ""),
            admin_password=os.getenv("ADMIN_PASSWORD", ""),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", ""),
            is_prod=(
                os.getenv("ENV", "").lower() in {"prod", "production"}
                or _truthy("FORCE_CROSS_SITE_COOKIES")
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """FastAPI dependency; loads .env and the environment exactly once."""
    load_dotenv(dotenv_path=Path.cwd() / ".env")
    return Settings.from_env()
