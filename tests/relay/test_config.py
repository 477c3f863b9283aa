"""Tests for relay configuration loading."""

import pytest
from pydantic import ValidationError

from src.relay.config import RelaySettings, get_settings


@pytest.fixture
def relay_env(monkeypatch, private_key_pem):
    monkeypatch.setenv("RELAY_WEBHOOK_SECRET", "  s3cret\n")
    monkeypatch.setenv("RELAY_APP_PRIVATE_KEY", private_key_pem)
    monkeypatch.setenv("RELAY_WEBHOOK_SLUG", "/hooks-abc123/")
    monkeypatch.setenv("RELAY_AUTOMATION_ACTOR_ID", "4242")
    return monkeypatch


class TestRelaySettings:

    def test_load_from_env(self, relay_env):
        settings = get_settings()

        assert settings.webhook_secret == "s3cret"
        assert settings.webhook_slug == "hooks-abc123"
        assert settings.automation_actor_id == 4242

    def test_defaults(self, relay_env):
        relay_env.delenv("RELAY_REDIS_URL", raising=False)

        settings = get_settings()

        assert settings.redis_url is None
        assert settings.command_prefix == "!harmful"
        assert settings.request_timeout_seconds == 60.0
        assert settings.max_body_bytes == 30_000_000
        assert settings.worker_count == 4
        assert settings.queue_size == 256
        assert settings.port == 3000
        assert settings.log_level == "INFO"
        assert settings.json_logs is False

    def test_missing_required(self, monkeypatch):
        for name in (
            "RELAY_WEBHOOK_SECRET",
            "RELAY_APP_PRIVATE_KEY",
            "RELAY_WEBHOOK_SLUG",
            "RELAY_AUTOMATION_ACTOR_ID",
        ):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(ValidationError):
            RelaySettings()

    def test_blank_secret_rejected(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(webhook_secret="   ")

    def test_private_key_must_be_pem(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(app_private_key="not a key")

    @pytest.mark.parametrize("slug", ["a/b", "has space", "", "?x=1"])
    def test_invalid_slug(self, make_settings, slug):
        with pytest.raises(ValidationError):
            make_settings(webhook_slug=slug)

    def test_actor_id_must_be_positive(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(automation_actor_id=0)

    def test_command_prefix_single_token(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(command_prefix="! harmful")

    @pytest.mark.parametrize(
        "url", ["redis://localhost:6379/0", "rediss://cache:6380", "unix:///tmp/redis.sock"]
    )
    def test_redis_url_schemes(self, make_settings, url):
        assert make_settings(redis_url=url).redis_url == url

    def test_blank_redis_url_means_in_memory(self, make_settings):
        assert make_settings(redis_url="  ").redis_url is None

    def test_redis_url_bad_scheme(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(redis_url="http://localhost:6379")

    @pytest.mark.parametrize(
        "field, value",
        [
            ("request_timeout_seconds", 0),
            ("max_body_bytes", 0),
            ("worker_count", 0),
            ("queue_size", 0),
            ("port", 70000),
            ("log_level", "LOUD"),
        ],
    )
    def test_out_of_range(self, make_settings, field, value):
        with pytest.raises(ValidationError):
            make_settings(**{field: value})

    def test_home_url(self, make_settings):
        assert make_settings().home_url == "https://github.com/harmless-tech/test-github-app"
        assert make_settings(home_url=" ").home_url is None
        with pytest.raises(ValidationError):
            make_settings(home_url="ftp://example.test")

    def test_log_level_normalized(self, make_settings):
        assert make_settings(log_level="debug").log_level == "DEBUG"
