from .settings import (
    AuthSettings,
    DispatchSettings,
    IoTHubSettings,
    MailSettings,
    RateLimitSettings,
    Settings,
    StorageSettings,
    load_settings,
)

__all__ = [
    "AuthSettings",
    "DispatchSettings",
    "IoTHubSettings",
    "MailSettings",
    "RateLimitSettings",
    "Settings",
    "StorageSettings",
    "load_settings",
]
