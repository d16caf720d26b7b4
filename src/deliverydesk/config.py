from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DbConfig:
    host: str
    port: int
    name: str
    user: str
    password: str
    sslmode: str = "disable"


@dataclass(frozen=True)
class StorageConfig:
    backend: str = "json"
    data_dir: Path = Path("data")
    lock_timeout: float = 30.0


@dataclass(frozen=True)
class NotifyConfig:
    transport: str = "none"
    mode: str = "background"
    max_retries: int = 2
    retry_backoff: float = 1.0
    timeout: float = 15.0
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    sender: str | None = None
    recipient: str | None = None
    webhook_url: str | None = None


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass(frozen=True)
class AppConfig:
    name: str
    log_level: str
    secret_key: str
    token_ttl_hours: float = 2.0
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    db: DbConfig | None = None


STORAGE_BACKENDS = {"json", "postgres"}
NOTIFY_TRANSPORTS = {"none", "smtp", "webhook"}
NOTIFY_MODES = {"background", "sync"}


def load_config(path: str | Path | None) -> AppConfig:
    """Read a TOML config file. ``None`` means defaults plus environment overrides."""
    if path is None:
        return config_from_mapping({})

    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p.resolve()}")

    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigError(f"Failed to read config TOML: {e}") from e

    return config_from_mapping(data)


def config_from_mapping(data: dict[str, Any], env: dict[str, str] | None = None) -> AppConfig:
    env = os.environ if env is None else env

    try:
        app = data.get("app", {})
        server = data.get("server", {})
        storage = data.get("storage", {})
        notify = data.get("notify", {})

        backend = str(storage.get("backend", "json"))
        if backend not in STORAGE_BACKENDS:
            raise ConfigError(f"Unknown storage backend: {backend}")

        db = None
        if "db" in data:
            db_data = data["db"]
            db = DbConfig(
                host=str(db_data["host"]),
                port=int(db_data.get("port", 5432)),
                name=str(db_data["name"]),
                user=str(db_data["user"]),
                password=str(db_data["password"]),
                sslmode=str(db_data.get("sslmode", "disable")),
            )
        elif backend == "postgres":
            raise ConfigError("Storage backend 'postgres' requires a [db] section")

        transport = str(notify.get("transport", "none"))
        if transport not in NOTIFY_TRANSPORTS:
            raise ConfigError(f"Unknown notify transport: {transport}")
        mode = str(notify.get("mode", "background"))
        if mode not in NOTIFY_MODES:
            raise ConfigError(f"Unknown notify mode: {mode}")

        return AppConfig(
            name=str(app.get("name", "DeliveryDesk")),
            log_level=str(app.get("log_level", "INFO")),
            secret_key=env.get("JWT_SECRET") or str(app.get("secret_key", "supersecretkey")),
            token_ttl_hours=float(app.get("token_ttl_hours", 2.0)),
            server=ServerConfig(
                host=str(server.get("host", "127.0.0.1")),
                port=int(env.get("PORT") or server.get("port", 3000)),
            ),
            storage=StorageConfig(
                backend=backend,
                data_dir=Path(storage.get("data_dir", "data")),
                lock_timeout=float(storage.get("lock_timeout", 30.0)),
            ),
            notify=NotifyConfig(
                transport=transport,
                mode=mode,
                max_retries=int(notify.get("max_retries", 2)),
                retry_backoff=float(notify.get("retry_backoff", 1.0)),
                timeout=float(notify.get("timeout", 15.0)),
                smtp_host=str(notify.get("smtp_host", "smtp.gmail.com")),
                smtp_port=int(notify.get("smtp_port", 587)),
                smtp_user=env.get("EMAIL_USER") or notify.get("smtp_user"),
                smtp_password=env.get("EMAIL_PASS") or notify.get("smtp_password"),
                sender=notify.get("sender") or env.get("EMAIL_USER") or notify.get("smtp_user"),
                recipient=env.get("ADMIN_EMAIL") or notify.get("recipient"),
                webhook_url=env.get("NOTIFY_WEBHOOK_URL") or notify.get("webhook_url"),
            ),
            db=db,
        )
    except ConfigError:
        raise
    except KeyError as e:
        raise ConfigError(f"Missing config key: {e}") from e
    except Exception as e:
        raise ConfigError(f"Invalid config values: {e}") from e
