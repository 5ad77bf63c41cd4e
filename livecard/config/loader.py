"""Load configuration from YAML and environment variables. No hardcoded secrets."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default config lives next to this module
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore", populate_by_name=True)
    url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")


class FeishuAccountSettings(BaseModel):
    """One Feishu/Lark app. `domain` is "feishu", "lark" or a private deployment URL."""

    model_config = ConfigDict(extra="ignore")
    account_id: str = "default"
    app_id: str = ""
    app_secret: str = ""
    domain: Optional[str] = None


class FeishuSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FEISHU_", extra="ignore", populate_by_name=True)
    enabled: bool = True
    app_id: str = Field(default="", alias="FEISHU_APP_ID")
    app_secret: str = Field(default="", alias="FEISHU_APP_SECRET")
    domain: Optional[str] = Field(default=None, alias="FEISHU_DOMAIN")
    http_timeout: float = 10.0
    accounts: list[FeishuAccountSettings] = Field(default_factory=list)

    def resolved_accounts(self) -> list[FeishuAccountSettings]:
        """Explicit accounts, plus a "default" one from the top-level credentials."""
        accounts = list(self.accounts)
        has_default = any(a.account_id == "default" for a in accounts)
        if self.app_id and not has_default:
            accounts.insert(
                0,
                FeishuAccountSettings(
                    account_id="default",
                    app_id=self.app_id,
                    app_secret=self.app_secret,
                    domain=self.domain,
                ),
            )
        return accounts


class StreamingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STREAMING_", extra="ignore")
    update_throttle_ms: int = 100


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")
    level: str = "INFO"
    json_format: bool = True


class Config(BaseSettings):
    """Application config: YAML + env. Secrets from env only."""

    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    feishu: FeishuSettings = Field(default_factory=FeishuSettings)
    streaming: StreamingSettings = Field(default_factory=StreamingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        env_prefix = os.getenv("LIVECARD_ENV_PREFIX", "")
        if env_prefix:
            yaml_data = _deep_merge(yaml_data, _load_yaml(Path(f"config/{env_prefix}.yaml")))
        redis_url = os.getenv("REDIS_URL")
        if redis_url:
            yaml_data.setdefault("redis", {})["url"] = redis_url
        for env_name, key in (
            ("FEISHU_APP_ID", "app_id"),
            ("FEISHU_APP_SECRET", "app_secret"),
            ("FEISHU_DOMAIN", "domain"),
        ):
            value = os.getenv(env_name)
            if value:
                yaml_data.setdefault("feishu", {})[key] = value
        throttle = os.getenv("STREAMING_UPDATE_THROTTLE_MS")
        if throttle:
            yaml_data.setdefault("streaming", {})["update_throttle_ms"] = int(throttle)
        level = os.getenv("LOG_LEVEL")
        if level:
            yaml_data.setdefault("logging", {})["level"] = level
        return cls(**yaml_data)


def get_config(config_path: str | Path | None = None) -> Config:
    return Config.load(config_path)
