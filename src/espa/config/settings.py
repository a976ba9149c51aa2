# src/espa/config/settings.py
"""Runtime settings for the ESPA control service.

Defaults live in the packaged ``config.yaml``.  An optional user file (explicit
path or ``$ESPA_CONFIG``) is merged on top and a small set of environment
variables wins over both, so secrets never have to be written to disk.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping
import os

import yaml

from .const import CONFIG_ENV_VAR, DEV_DEVICE_JWT_SECRET, DEV_JWT_SECRET

__all__ = [
    "AuthSettings",
    "RateLimitSettings",
    "DispatchSettings",
    "StorageSettings",
    "MailSettings",
    "IoTHubSettings",
    "Settings",
    "load_settings",
]


@dataclass
class AuthSettings:
    jwt_secret: str = DEV_JWT_SECRET
    device_jwt_secret: str = DEV_DEVICE_JWT_SECRET
    code_ttl_seconds: int = 600
    setup_token_ttl_seconds: int = 900
    session_token_ttl_days: int = 180
    device_token_ttl_days: int = 365
    max_failed_attempts: int = 3
    lockout_seconds: int = 900
    bcrypt_rounds: int = 10


@dataclass
class RateLimitSettings:
    max_requests: int = 5
    window_ms: int = 60_000


@dataclass
class DispatchSettings:
    response_timeout_seconds: float = 15.0
    connect_timeout_seconds: float = 5.0
    fallback_timeout_seconds: float = 15.0
    default_name_prefix: str = "ESPA-Pi-"
    source: str = "espa-control"


@dataclass
class StorageSettings:
    # None keeps everything in memory
    sqlite_path: str | None = None


@dataclass
class MailSettings:
    smtp_host: str = "smtp-relay.brevo.com"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    from_email: str = "noreply@espa-tv.com"
    from_name: str = "ESPA TV Auth"
    subject: str = "ESPA TV: Vahvistuskoodisi"
    body_template: str = "Tervetuloa ESPA TV -palveluun. Vahvistuskoodisi on: {code}"

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)


@dataclass
class IoTHubSettings:
    connection_string: str | None = None
    hub_name: str = "espa-tv-iot-hub"
    api_version: str = "2021-04-12"
    sas_ttl_minutes: int = 60
    device_sas_ttl_minutes: int = 1440

    @property
    def enabled(self) -> bool:
        return bool(self.connection_string)


@dataclass
class Settings:
    auth: AuthSettings = field(default_factory=AuthSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    mail: MailSettings = field(default_factory=MailSettings)
    iot_hub: IoTHubSettings = field(default_factory=IoTHubSettings)

    def as_dict(self, *, mask_secrets: bool = True) -> dict[str, Any]:
        data = asdict(self)
        if mask_secrets:
            for section, key in _SECRET_FIELDS:
                if data[section].get(key):
                    data[section][key] = "***"
        return data


_SECRET_FIELDS = (
    ("auth", "jwt_secret"),
    ("auth", "device_jwt_secret"),
    ("mail", "smtp_password"),
    ("iot_hub", "connection_string"),
)

# env var -> (section, key)
_ENV_OVERRIDES: Mapping[str, tuple[str, str]] = {
    "JWT_SECRET": ("auth", "jwt_secret"),
    "DEVICE_JWT_SECRET": ("auth", "device_jwt_secret"),
    "ESPA_STORAGE_PATH": ("storage", "sqlite_path"),
    "IOT_HUB_CONNECTION_STRING": ("iot_hub", "connection_string"),
    "IOT_HUB_NAME": ("iot_hub", "hub_name"),
    "SMTP_HOST": ("mail", "smtp_host"),
    "SMTP_PORT": ("mail", "smtp_port"),
    "SMTP_USER": ("mail", "smtp_user"),
    "SMTP_PASSWORD": ("mail", "smtp_password"),
    "FROM_EMAIL": ("mail", "from_email"),
    "FROM_NAME": ("mail", "from_name"),
}


def _defaults_path() -> Path:
    return Path(__file__).with_name("config.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a mapping")
    return data


def _merge(base: dict[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _section(cls: type, raw: Mapping[str, Any] | None):
    raw = raw or {}
    known = {f.name: f for f in fields(cls)}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known or value is None:
            continue
        values[key] = value
    instance = cls(**values)
    # coerce scalar types so env strings ("587") end up as ints/floats
    for name, f in known.items():
        current = getattr(instance, name)
        if current is None or f.type not in ("int", "float"):
            continue
        setattr(instance, name, int(current) if f.type == "int" else float(current))
    return instance


def load_settings(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Build :class:`Settings` from packaged defaults, a user file and env."""

    env = os.environ if env is None else env
    data = _read_yaml(_defaults_path())
    user_path = path or env.get(CONFIG_ENV_VAR)
    if user_path:
        data = _merge(data, _read_yaml(Path(user_path)))
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            data.setdefault(section, {})[key] = value
    return Settings(
        auth=_section(AuthSettings, data.get("auth")),
        rate_limit=_section(RateLimitSettings, data.get("rate_limit")),
        dispatch=_section(DispatchSettings, data.get("dispatch")),
        storage=_section(StorageSettings, data.get("storage")),
        mail=_section(MailSettings, data.get("mail")),
        iot_hub=_section(IoTHubSettings, data.get("iot_hub")),
    )
