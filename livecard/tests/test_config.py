"""Tests for config loading."""

from __future__ import annotations

from livecard.config.loader import Config, FeishuSettings, _deep_merge, _load_yaml, get_config


def test_load_yaml_missing(tmp_path):
    assert _load_yaml(tmp_path / "nonexistent.yaml") == {}


def test_default_config():
    config = Config.load()
    assert config.streaming.update_throttle_ms == 100
    assert config.feishu.domain == "feishu"
    assert config.feishu.resolved_accounts() == []


def test_config_load_accounts_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "feishu:\n"
        "  accounts:\n"
        "    - account_id: cn\n"
        "      app_id: cli_cn\n"
        "      app_secret: s1\n"
        "    - account_id: intl\n"
        "      app_id: cli_intl\n"
        "      app_secret: s2\n"
        "      domain: lark\n"
        "streaming:\n"
        "  update_throttle_ms: 250\n"
    )
    config = Config.load(config_path=path)
    accounts = {a.account_id: a for a in config.feishu.resolved_accounts()}
    assert set(accounts) == {"cn", "intl"}
    assert accounts["intl"].domain == "lark"
    assert config.streaming.update_throttle_ms == 250


def test_env_credentials_become_default_account(monkeypatch):
    monkeypatch.setenv("FEISHU_APP_ID", "cli_env")
    monkeypatch.setenv("FEISHU_APP_SECRET", "env-secret")
    monkeypatch.setenv("FEISHU_DOMAIN", "lark")
    config = Config.load()
    default = config.feishu.resolved_accounts()[0]
    assert default.account_id == "default"
    assert default.app_id == "cli_env"
    assert default.app_secret == "env-secret"
    assert default.domain == "lark"


def test_explicit_default_account_wins():
    settings = FeishuSettings(
        app_id="cli_top",
        app_secret="x",
        accounts=[{"account_id": "default", "app_id": "cli_listed", "app_secret": "y"}],
    )
    accounts = settings.resolved_accounts()
    assert len(accounts) == 1
    assert accounts[0].app_id == "cli_listed"


def test_config_env_override(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://test:6379/5")
    monkeypatch.setenv("STREAMING_UPDATE_THROTTLE_MS", "40")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    config = Config.load()
    assert config.redis.url == "redis://test:6379/5"
    assert config.streaming.update_throttle_ms == 40
    assert config.logging.level == "DEBUG"


def test_deep_merge():
    base = {"a": 1, "b": {"x": 10, "y": 20}}
    override = {"b": {"y": 22, "z": 30}, "c": 3}
    out = _deep_merge(base, override)
    assert out == {"a": 1, "b": {"x": 10, "y": 22, "z": 30}, "c": 3}
    assert base["b"] == {"x": 10, "y": 20}


def test_config_env_prefix_overlay(monkeypatch, tmp_path):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "staging.yaml").write_text("streaming:\n  update_throttle_ms: 500\n")
    monkeypatch.setenv("LIVECARD_ENV_PREFIX", "staging")
    monkeypatch.chdir(tmp_path)
    config = Config.load()
    assert config.streaming.update_throttle_ms == 500


def test_config_env_prefix_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("LIVECARD_ENV_PREFIX", "staging")
    monkeypatch.chdir(tmp_path)
    config = Config.load()
    assert config.redis.url == "redis://localhost:6379/1"


def test_get_config(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("feishu:\n  http_timeout: 3.5\n")
    config = get_config(config_path=str(path))
    assert config.feishu.http_timeout == 3.5
