import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


@dataclass(frozen=True)
class GatewayConfig:
    secret_key: str
    currency: str = "usd"
    return_url: str = "http://localhost:5173/shop/payment-return?session_id={CHECKOUT_SESSION_ID}"
    cancel_url: str = "http://localhost:5173/shop/payment-cancel"
    timeout: float = 30.0


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str
    gateway: GatewayConfig


def load_settings() -> Settings:
    gateway = GatewayConfig(
        secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        currency=os.getenv("CHECKOUT_CURRENCY", "usd").lower(),
        return_url=os.getenv("CHECKOUT_RETURN_URL", GatewayConfig.return_url),
        cancel_url=os.getenv("CHECKOUT_CANCEL_URL", GatewayConfig.cancel_url),
        timeout=float(os.getenv("STRIPE_TIMEOUT_SECONDS", "30")),
    )
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./checkout.db"),
        jwt_secret=os.getenv("JWT_SECRET", ""),
        gateway=gateway,
    )


settings = load_settings()
