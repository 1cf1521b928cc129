"""Tests for router configuration handling."""

import json

import pytest

from ai_failover.config import (
    REDACTED,
    ConfigError,
    ConfigSource,
    ProviderConfig,
    RouterConfig,
)


def test_config_defaults():
    """Defaults mirror the built-in provider set."""
    config = RouterConfig.from_env({})

    assert config.active_provider == "claude"
    assert [p.provider for p in config.providers] == ["mock", "claude", "openai"]
    claude = config.get_provider_config("claude")
    assert claude.priority == 1
    assert claude.options["fallback_models"] == ["claude-opus-4-1", "claude-opus-4-0", "claude-sonnet-4-0"]
    assert config.get_provider_config("openai").enabled is False
    assert config.settings.cache_enabled is True
    assert config.settings.cache_ttl == 3600
    assert config.settings.metrics_backend == "logging"
    assert config.settings.request_timeout is None
    assert config.source_of("active_provider") is ConfigSource.DEFAULT


def test_config_from_env_overrides():
    """Environment values override defaults and are tracked as such."""
    config = RouterConfig.from_env(
        {
            "AI_PROVIDER": "openai",
            "ANTHROPIC_API_KEY": "anthropic-key",
            "ANTHROPIC_MODEL": "claude-opus-4-1",
            "OPENAI_API_KEY": "openai-key",
            "OPENAI_MODEL": "gpt-4o-mini",
            "OPENAI_ORG": "org-1",
            "OPENAI_PROJECT": "proj-1",
            "AI_CACHE_ENABLED": "false",
            "AI_CACHE_TTL": "120",
            "AI_LOG_LEVEL": "DEBUG",
            "AI_RETRY_MAX": "5",
            "AI_RETRY_DELAY": "0.25",
            "AI_RETRY_BACKOFF": "3",
            "AI_REQUEST_TIMEOUT": "30",
            "AI_METRICS_BACKEND": "prometheus",
            "AI_METRICS_PORT": "9100",
        }
    )

    openai = config.get_provider_config("openai")
    claude = config.get_provider_config("claude")
    assert config.active_provider == "openai"
    assert config.source_of("active_provider") is ConfigSource.ENVIRONMENT
    assert claude.api_key == "anthropic-key"
    assert claude.model == "claude-opus-4-1"
    assert openai.enabled is True
    assert openai.model == "gpt-4o-mini"
    assert openai.options == {"organization": "org-1", "project": "proj-1"}
    settings = config.settings
    assert settings.cache_enabled is False
    assert settings.cache_ttl == 120
    assert settings.log_level == "debug"
    assert settings.max_retries == 5
    assert settings.retry_delay == pytest.approx(0.25)
    assert settings.backoff_multiplier == pytest.approx(3)
    assert settings.request_timeout == pytest.approx(30)
    assert settings.metrics_backend == "prometheus"
    assert settings.metrics_port == 9100


@pytest.mark.parametrize(
    "env_key, value",
    [
        ("AI_RETRY_MAX", "0"),
        ("AI_RETRY_MAX", "many"),
        ("AI_CACHE_TTL", "-1"),
        ("AI_REQUEST_TIMEOUT", "0"),
        ("AI_LOG_LEVEL", "chatty"),
        ("AI_METRICS_BACKEND", "statsd"),
    ],
)
def test_config_invalid_values(env_key, value):
    """Invalid values should raise an explicit ConfigError."""
    with pytest.raises(ConfigError) as exc:
        RouterConfig.from_env({env_key: value})

    assert env_key in str(exc.value) or "numeric" in str(exc.value)


def test_export_redacts_api_keys():
    config = RouterConfig(
        providers=[
            ProviderConfig(provider="claude", name="Claude", api_key="secret-key-123", priority=1),
            ProviderConfig(
                provider="custom",
                name="Custom",
                options={"nested": {"apiKey": "secret-key-123"}},
            ),
        ]
    )

    exported = config.export()

    assert "secret-key-123" not in exported
    assert REDACTED in exported
    payload = json.loads(exported)
    assert payload["providers"][0]["api_key"] == REDACTED
    assert payload["providers"][1]["options"]["nested"]["apiKey"] == REDACTED
    assert payload["providers"][1]["api_key"] is None


def test_runtime_updates_and_sources():
    config = RouterConfig.from_env({})

    config.update_provider_config("openai", enabled=True, priority=0)
    config.set_active_provider("openai")
    config.update_settings(cache_ttl=10)

    assert config.get_provider_config("openai").priority == 0
    assert config.active_provider == "openai"
    assert config.source_of("active_provider") is ConfigSource.RUNTIME
    assert config.source_of("settings.cache_ttl") is ConfigSource.RUNTIME

    with pytest.raises(ConfigError):
        config.update_provider_config("ghost", enabled=True)
    with pytest.raises(ConfigError):
        config.update_provider_config("openai", colour="blue")
    with pytest.raises(ConfigError):
        config.update_settings(colour="blue")

    config.update_provider_config("mock", enabled=False)
    with pytest.raises(ConfigError):
        config.set_active_provider("mock")


def test_validate_reports_problems(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    config = RouterConfig.from_env({})

    valid, errors = config.validate()

    assert valid is False
    assert any("claude" in error and "API key" in error for error in errors)

    config.update_provider_config("claude", api_key="anthropic-key")
    assert config.validate() == (True, [])

    config.active_provider = "ghost"
    valid, errors = config.validate()
    assert valid is False
    assert "Active provider ghost not found" in errors


def test_copy_is_independent():
    config = RouterConfig.from_env({})
    clone = config.copy()

    clone.update_provider_config("mock", priority=1)

    assert config.get_provider_config("mock").priority == 100


def test_listeners_receive_applied_updates():
    config = RouterConfig.from_env({})
    events = []
    config.add_listener(lambda section, target, changes: events.append((section, target, changes)))

    config.update_provider_config("mock", priority=7)
    config.set_active_provider("mock")
    config.update_settings(cache_ttl=5)
    with pytest.raises(ConfigError):
        config.update_provider_config("mock", provider="renamed")

    assert events == [
        ("provider", "mock", {"priority": 7}),
        ("active_provider", "mock", {}),
        ("settings", None, {"cache_ttl": 5}),
    ]
    assert config.copy().listeners == []
