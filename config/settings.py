"""
Configuration loader for the SMS dispatch service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./sms_dispatch.db"          # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory"


@dataclass
class CacheConfig:
    backend: str = "memory"                            # "memory" | "redis"
    redis_url: str = "redis://localhost:6379/0"
    request_ttl_seconds: int = 24 * 60 * 60
    blacklist_ttl_seconds: int = 24 * 60 * 60


@dataclass
class SearchConfig:
    backend: str = "memory"                            # "memory" | "sql"


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    request_topic: str = "sms:request"
    response_topic: str = "sms:response"
    partitions: int = 3
    consumer_group: str = "sms-dispatch-workers"
    workers: int = 1                    # each worker owns a disjoint partition set


@dataclass
class ProviderConfig:
    url: str = ""
    key: str = ""
    timeout_seconds: float = 10.0


@dataclass
class RateLimitConfig:
    enabled: bool = False
    per_minute: int = 100
    per_hour: int = 1000


@dataclass
class SmsConfig:
    max_retries: int = 3
    retry_delay_ms: int = 1000
    retry_enabled: bool = False
    default_country_code: str = "+91"
    max_message_length: int = 1600
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)


@dataclass
class Settings:
    app_name: str = "SmsDispatch"
    debug: bool = False
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    sms: SmsConfig = field(default_factory=SmsConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "SMS_DISPATCH_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "database" in raw:
            db = raw["database"]
            settings.database = DatabaseConfig(
                url=db.get("url", settings.database.url),
                store_backend=db.get("store_backend", settings.database.store_backend),
            )

        if "cache" in raw:
            c = raw["cache"]
            settings.cache = CacheConfig(
                backend=c.get("backend", "memory"),
                redis_url=c.get("redis_url", settings.cache.redis_url),
                request_ttl_seconds=int(c.get("request_ttl_seconds", settings.cache.request_ttl_seconds)),
                blacklist_ttl_seconds=int(c.get("blacklist_ttl_seconds", settings.cache.blacklist_ttl_seconds)),
            )

        if "search" in raw:
            settings.search = SearchConfig(
                backend=raw["search"].get("backend", "memory"),
            )

        if "queue" in raw:
            q = raw["queue"]
            settings.queue = QueueConfig(
                backend=q.get("backend", "memory"),
                redis_url=q.get("redis_url", "redis://localhost:6379"),
                request_topic=q.get("request_topic", "sms:request"),
                response_topic=q.get("response_topic", "sms:response"),
                partitions=int(q.get("partitions", 3)),
                consumer_group=q.get("consumer_group", "sms-dispatch-workers"),
                workers=int(q.get("workers", 1)),
            )

        if "provider" in raw:
            p = raw["provider"]
            settings.provider = ProviderConfig(
                url=p.get("url", ""),
                key=p.get("key", ""),
                timeout_seconds=float(p.get("timeout_seconds", 10.0)),
            )

        if "sms" in raw:
            s = raw["sms"]
            rl = s.get("rate_limit", {})
            settings.sms = SmsConfig(
                max_retries=int(s.get("max_retries", 3)),
                retry_delay_ms=int(s.get("retry_delay_ms", 1000)),
                retry_enabled=bool(s.get("retry_enabled", False)),
                default_country_code=s.get("default_country_code", "+91"),
                max_message_length=int(s.get("max_message_length", 1600)),
                rate_limit=RateLimitConfig(
                    enabled=bool(rl.get("enabled", False)),
                    per_minute=int(rl.get("per_minute", 100)),
                    per_hour=int(rl.get("per_hour", 1000)),
                ),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
