# src/espa/config/const.py
from __future__ import annotations

# Hard defaults; config.yaml and env may override the ones listed in settings.py
DEV_JWT_SECRET: str = "dev-secret-change-in-prod-123"
DEV_DEVICE_JWT_SECRET: str = "device-secret-change-in-prod-456"

CONFIG_ENV_VAR: str = "ESPA_CONFIG"

TABLE_USERS: str = "users"
TABLE_DEVICES: str = "devices"
TABLE_PERMISSIONS: str = "permissions"
TABLE_ENTRIES: str = "entries"

SYSTEM_PARTITION: str = "$system"
