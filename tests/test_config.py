"""
Settings Tests

Validates environment parsing, provider enablement and the startup
checks that turn Settings into ProviderConfig values.
"""

import pytest
from pydantic import ValidationError

from kubellm.config import ProviderConfig, Settings, get_settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestProviderEnablement:
    """A provider is enabled exactly when its API key is set."""

    def test_all_keys_from_environment(self):
        settings = make_settings()

        assert settings.enabled_providers() == ["anthropic", "openai", "groq"]

    def test_missing_key_disables_provider(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY")

        settings = make_settings()

        assert settings.enabled_providers() == ["anthropic", "openai"]
        assert [c.provider_id for c in settings.provider_configs()] == ["anthropic", "openai"]

    def test_blank_key_disables_provider(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "   ")

        assert "openai" not in make_settings().enabled_providers()

    def test_no_keys_fails(self, monkeypatch):
        for name in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GROQ_API_KEY"):
            monkeypatch.delenv(name)

        with pytest.raises(ValidationError, match="No provider credentials"):
            make_settings()


class TestModelLists:
    def test_comma_separated_models(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_MODELS", "claude-a, claude-b ,,claude-c")
        monkeypatch.setenv("ANTHROPIC_DEFAULT_MODEL", "claude-b")

        settings = make_settings()

        assert settings.anthropic_models == ["claude-a", "claude-b", "claude-c"]
        config = settings.provider_configs()[0]
        assert config.models == ("claude-a", "claude-b", "claude-c")
        assert config.default_model == "claude-b"

    def test_default_model_must_be_listed(self):
        with pytest.raises(ValidationError, match="OPENAI_DEFAULT_MODEL"):
            make_settings(openai_models=["gpt-4o"], openai_default_model="gpt-4o-mini")

    def test_disabled_provider_models_not_checked(self, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY")

        settings = make_settings(groq_models=["a"], groq_default_model="b")

        assert "groq" not in settings.enabled_providers()


class TestEndpoints:
    def test_trailing_slash_stripped(self):
        settings = make_settings(anthropic_base_url="https://proxy.internal/v1/")

        assert settings.anthropic_base_url == "https://proxy.internal/v1"

    @pytest.mark.parametrize("url", ["ftp://api.example.com", "not a url", "https://"])
    def test_invalid_endpoint_rejected(self, url):
        with pytest.raises(ValidationError):
            make_settings(openai_base_url=url)


class TestDatabaseUrl:
    @pytest.mark.parametrize("url", ["memory://", "sqlite:///kubellm.db", "sqlite:////tmp/k.db"])
    def test_supported_urls(self, url):
        assert make_settings(database_url=url).database_url == url

    def test_unsupported_url(self):
        with pytest.raises(ValidationError):
            make_settings(database_url="mysql://root@localhost/kube_llm")


class TestDerivedValues:
    def test_provider_config_fields(self):
        settings = make_settings(anthropic_timeout=12.5)

        config = settings.provider_configs()[0]

        assert isinstance(config, ProviderConfig)
        assert config.provider_id == "anthropic"
        assert config.kind == "anthropic"
        assert config.base_url == "https://api.anthropic.com/v1"
        assert config.timeout_seconds == 12.5
        assert config.api_key.get_secret_value() == "test-key-not-real"

    def test_api_key_hidden_in_repr(self):
        config = make_settings().provider_configs()[0]

        assert "test-key-not-real" not in repr(config)

    def test_retry_policy(self):
        policy = make_settings(
            retry_max_attempts=5, retry_base_delay=0.25, retry_max_delay=4.0
        ).retry_policy()

        assert policy.max_attempts == 5
        assert policy.base_delay == 0.25
        assert policy.max_delay == 4.0

    def test_max_delay_below_base_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(retry_base_delay=5.0, retry_max_delay=1.0)

    def test_defaults(self):
        settings = make_settings()

        assert settings.retry_max_attempts == 3
        assert settings.dispatch_timeout == 120.0
        assert settings.port == 3001

    def test_provider_timeouts_default_to_sixty_seconds(self):
        configs = make_settings().provider_configs()

        assert [c.provider_id for c in configs] == ["anthropic", "openai", "groq"]
        assert all(c.timeout_seconds == 60.0 for c in configs)

    def test_history_file_path(self, monkeypatch, tmp_path):
        assert make_settings().history_file_path.name == ".kubellm-cli-history"

        monkeypatch.setenv("HISTORY_FILE_PATH", str(tmp_path / "hist"))

        assert make_settings().history_file_path == tmp_path / "hist"

    def test_base_url_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_BASE_URL", "http://127.0.0.1:8080/v1")

        config = make_settings().provider_configs()[0]

        assert config.base_url == "http://127.0.0.1:8080/v1"


class TestProviderConfig:
    def test_default_model_must_be_listed(self):
        with pytest.raises(ValidationError):
            ProviderConfig(
                provider_id="anthropic",
                kind="anthropic",
                api_key="k",
                base_url="https://api.anthropic.com/v1",
                models=("claude-x",),
                default_model="claude-z",
            )

    def test_frozen(self, provider_configs):
        with pytest.raises(ValidationError):
            provider_configs[0].timeout_seconds = 1.0


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()
