"""
Configuration for the storefront.

Process settings come from config/settings.yaml (with ${VAR:default}
substitution, after loading .env). Site configuration is the admin-editable
document in the site_config collection, with environment fallbacks for
credentials.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ..stores.documents import SITE_CONFIG_COLLECTION, DocumentStore
from ..utils.exceptions import ConfigurationMissing, PersistenceError
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config") / "settings.yaml"
MAX_CRYPTO_WALLETS = 5


class AppSettings(BaseModel):
    name: str = "VideosPlus"
    environment: str = "development"
    base_url: str = "http://localhost:8000"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"


class StorageSettings(BaseModel):
    data_dir: str = "data"


class SessionSettings(BaseModel):
    lifetime_hours: int = 24
    cache_ttl_seconds: int = 30
    check_interval_seconds: int = 300
    check_debounce_seconds: int = 10
    cookie_name: str = "session_token"


class CheckoutSettings(BaseModel):
    countdown_seconds: int = 10
    currency: str = "USD"
    paypal_api_base: str = "https://api-m.sandbox.paypal.com"
    verify_stripe_completion: bool = True


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    checkout: CheckoutSettings = Field(default_factory=CheckoutSettings)

    @property
    def is_production(self) -> bool:
        return self.app.environment.strip().lower() == "production"


class ConfigLoader:
    """Load settings.yaml and substitute environment variables"""

    def __init__(self, config_path: Optional[str | Path] = None):
        load_dotenv()
        self.config_path = Path(
            config_path or os.getenv("STOREFRONT_CONFIG") or DEFAULT_CONFIG_PATH
        )

    def _substitute_env_vars(self, value: Any, context: str = "") -> Any:
        """Recursively substitute ${VAR} and ${VAR:default} in config values"""
        if isinstance(value, str):
            if value.startswith("${") and value.endswith("}"):
                var_expr = value[2:-1]
                if ":" in var_expr:
                    var_name, default = var_expr.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip())
                env_value = os.getenv(var_expr)
                if env_value is None:
                    where = f" (in {context})" if context else ""
                    raise ConfigurationMissing(
                        f"Environment variable {var_expr} not found{where}"
                    )
                return env_value
            return value
        if isinstance(value, dict):
            return {
                k: self._substitute_env_vars(v, f"{context}.{k}" if context else k)
                for k, v in value.items()
            }
        if isinstance(value, list):
            return [self._substitute_env_vars(item, context) for item in value]
        return value

    def load(self) -> Settings:
        if not self.config_path.exists():
            logger.info("No settings file, using defaults", path=str(self.config_path))
            return Settings()
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            raise ConfigurationMissing(f"Failed to read {self.config_path}: {e}")
        data = self._substitute_env_vars(raw)
        if isinstance(data.get("app", {}).get("cors_origins"), str):
            data["app"]["cors_origins"] = [
                o.strip() for o in data["app"]["cors_origins"].split(",") if o.strip()
            ]
        return Settings(**data)


def load_settings(config_path: Optional[str | Path] = None) -> Settings:
    return ConfigLoader(config_path).load()


@dataclass(frozen=True)
class EmailSettings:
    host: str = "smtp.gmail.com"
    port: int = 587
    secure: bool = False
    user: str = ""
    password: str = ""
    from_addr: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    @property
    def sender(self) -> str:
        return self.from_addr or self.user


def format_support_contact(telegram_username: Optional[str]) -> str:
    """Telegram handle with a leading @, or a generic fallback."""
    handle = (telegram_username or "").strip()
    if not handle:
        return "Contact support"
    return handle if handle.startswith("@") else "@" + handle


class CryptoWallet(BaseModel):
    code: str
    name: str
    address: str

    @classmethod
    def parse(cls, raw: str) -> "CryptoWallet":
        """Parse the stored "CODE - Name\\naddress" form."""
        header, sep, address = (raw or "").partition("\n")
        code, _, name = header.partition(" - ")
        if not sep or not code.strip() or not address.strip():
            raise ValueError(f"Invalid crypto wallet entry: {raw!r}")
        return cls(code=code.strip().upper(), name=name.strip(), address=address.strip())

    def to_raw(self) -> str:
        return f"{self.code} - {self.name}\n{self.address}"


def parse_wallets(entries: List[str], strict: bool = False) -> List[CryptoWallet]:
    """Parse wallet strings keeping one wallet per currency code, at most five."""
    wallets: List[CryptoWallet] = []
    seen = set()
    for raw in entries:
        try:
            wallet = CryptoWallet.parse(raw)
        except ValueError:
            if strict:
                raise
            logger.warning("Skipping malformed crypto wallet entry")
            continue
        if wallet.code in seen:
            if strict:
                raise ValueError(f"Only one wallet per currency is allowed ({wallet.code})")
            continue
        seen.add(wallet.code)
        wallets.append(wallet)
    if len(wallets) > MAX_CRYPTO_WALLETS:
        if strict:
            raise ValueError(f"At most {MAX_CRYPTO_WALLETS} crypto wallets are allowed")
        wallets = wallets[:MAX_CRYPTO_WALLETS]
    return wallets


class SiteConfig(BaseModel):
    """Admin-editable site configuration document."""

    id: Optional[str] = None
    site_name: str = "VideosPlus"
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    stripe_publishable_key: str = ""
    stripe_secret_key: str = ""
    telegram_username: str = ""
    video_list_title: str = ""
    crypto: List[str] = Field(default_factory=list)
    email_host: str = "smtp.gmail.com"
    email_port: int = 587
    email_secure: bool = False
    email_user: str = ""
    email_pass: str = ""
    email_from: str = ""

    @property
    def crypto_wallets(self) -> List[CryptoWallet]:
        return parse_wallets(self.crypto)

    @property
    def support_contact(self) -> str:
        return format_support_contact(self.telegram_username)

    def email_settings(self) -> EmailSettings:
        return EmailSettings(
            host=self.email_host or "smtp.gmail.com",
            port=int(self.email_port or 587),
            secure=bool(self.email_secure),
            user=self.email_user,
            password=self.email_pass,
            from_addr=self.email_from or self.email_user,
        )


# site_config field -> environment fallback
_ENV_FALLBACKS = {
    "email_user": "EMAIL_USER",
    "email_pass": "EMAIL_PASS",
    "email_from": "EMAIL_FROM",
    "telegram_username": "TELEGRAM_USERNAME",
    "stripe_secret_key": "STRIPE_SECRET_KEY",
    "paypal_client_id": "PAYPAL_CLIENT_ID",
    "paypal_client_secret": "PAYPAL_CLIENT_SECRET",
}


async def load_site_config(store: DocumentStore, strict: bool = False) -> SiteConfig:
    """
    First site_config document with env fallbacks for secrets.

    A store failure falls back to defaults, or is re-raised when strict.
    """
    data: Dict[str, Any] = {}
    try:
        documents = await store.list_documents(SITE_CONFIG_COLLECTION)
        if documents:
            data = {k: v for k, v in documents[0].items() if v is not None}
    except PersistenceError as e:
        logger.error("Failed to load site config", error=str(e), strict=strict)
        if strict:
            raise

    for field_name, env_var in _ENV_FALLBACKS.items():
        if not data.get(field_name):
            env_value = os.getenv(env_var)
            if env_value:
                data[field_name] = env_value
    return SiteConfig(**{k: v for k, v in data.items() if k in SiteConfig.model_fields})


@dataclass
class SiteConfigSaveReport:
    document_id: str
    saved: List[str]
    skipped: List[str]


async def save_site_config(store: DocumentStore, fields: Dict[str, Any]) -> SiteConfigSaveReport:
    """
    Save admin edits in one write, skipping fields the store does not support.

    Unsupported fields are reported instead of failing the whole save.
    """
    unknown = sorted(set(fields) - set(SiteConfig.model_fields) - {"id"})
    if unknown:
        raise ValueError(f"Unknown site config field(s): {', '.join(unknown)}")
    if "crypto" in fields:
        parse_wallets(list(fields["crypto"] or []), strict=True)

    supported = await store.supported_fields(SITE_CONFIG_COLLECTION)
    payload = {k: v for k, v in fields.items() if k != "id" and (supported is None or k in supported)}
    skipped = sorted(k for k in fields if k != "id" and k not in payload)

    existing = await store.list_documents(SITE_CONFIG_COLLECTION)
    if existing:
        document = await store.update_document(SITE_CONFIG_COLLECTION, existing[0]["id"], payload)
    else:
        document = await store.create_document(SITE_CONFIG_COLLECTION, None, payload)

    if skipped:
        logger.warning("Site config fields not supported by store", skipped=skipped)
    logger.info("Site config saved", saved=sorted(payload), document_id=document["id"])
    return SiteConfigSaveReport(document_id=document["id"], saved=sorted(payload), skipped=skipped)
