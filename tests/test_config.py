"""
Tests for environment-driven configuration (querygate/config.py).
"""

import logging

import pytest
from pydantic import ValidationError

from querygate.config import (
    DEFAULT_QUERY_TIMEOUT,
    OAuthMode,
    ProviderKind,
    Settings,
    parse_list,
)
from querygate.errors import ConfigError, ConfigErrorKind


class TestParseList:
    def test_empty(self):
        assert parse_list("") == ()

    def test_strips_and_drops_blanks(self):
        assert parse_list(" a, b ,,c ") == ("a", "b", "c")


class TestEnvironment:
    def test_reads_unprefixed_variables(self, monkeypatch):
        monkeypatch.setenv("OAUTH_ENABLED", "true")
        monkeypatch.setenv("OAUTH_PROVIDER", "hmac")
        monkeypatch.setenv("JWT_SECRET", "s3cret")
        monkeypatch.setenv("OIDC_AUDIENCE", "querygate")
        monkeypatch.setenv("TRINO_ALLOWED_CATALOGS", "hive,postgresql")

        settings = Settings(_env_file=None)

        assert settings.oauth_enabled is True
        assert settings.jwt_secret.get_secret_value() == "s3cret"
        assert settings.oidc_audience == "querygate"
        assert settings.allowed_catalogs == ("hive", "postgresql")

    def test_secrets_are_masked_in_repr(self, make_settings):
        settings = make_settings(jwt_secret="s3cret", oidc_client_secret="client-s3cret")
        assert "s3cret" not in repr(settings)

    def test_settings_are_frozen(self, make_settings):
        settings = make_settings()
        with pytest.raises(ValidationError):
            settings.oauth_enabled = True

    def test_defaults(self, make_settings):
        settings = make_settings()

        assert settings.oauth_enabled is False
        assert settings.trino_allow_write_queries is False
        assert settings.trino_query_timeout == DEFAULT_QUERY_TIMEOUT
        assert settings.trino_catalog == "memory"
        assert settings.trino_schema == "default"


class TestProviderAndMode:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("hmac", ProviderKind.HMAC),
            ("OIDC", ProviderKind.OIDC),
            ("okta", ProviderKind.OIDC),
            ("google", ProviderKind.OIDC),
            ("azure", ProviderKind.OIDC),
        ],
    )
    def test_provider_kind(self, make_settings, value, expected):
        assert make_settings(oauth_provider=value).provider_kind is expected

    def test_unknown_provider(self, make_settings):
        with pytest.raises(ConfigError) as exc_info:
            make_settings(oauth_provider="github").provider_kind
        assert exc_info.value.kind is ConfigErrorKind.INVALID_PROVIDER

    def test_mode(self, make_settings):
        assert make_settings().mode is OAuthMode.NATIVE
        assert make_settings(oauth_mode="Proxy").mode is OAuthMode.PROXY

    def test_unknown_mode(self, make_settings):
        with pytest.raises(ConfigError) as exc_info:
            make_settings(oauth_mode="relay").mode
        assert exc_info.value.kind is ConfigErrorKind.INVALID_MODE


class TestQueryTimeout:
    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_values_fall_back(self, make_settings, caplog, value):
        with caplog.at_level(logging.WARNING, logger="querygate.config"):
            settings = make_settings(trino_query_timeout=value)

        assert settings.trino_query_timeout == DEFAULT_QUERY_TIMEOUT
        assert "Invalid TRINO_QUERY_TIMEOUT" in caplog.text

    def test_valid_value(self, make_settings):
        assert make_settings(trino_query_timeout="120").trino_query_timeout == 120


class TestRedirectUris:
    def test_allowed_list(self, make_settings):
        settings = make_settings(oauth_allowed_redirect_uris="https://a/cb, https://b/cb")
        assert settings.redirect_uris == ("https://a/cb", "https://b/cb")

    def test_deprecated_single_uri(self, make_settings, caplog):
        settings = make_settings(oauth_redirect_uri="https://gw/oauth/callback")

        with caplog.at_level(logging.WARNING, logger="querygate.config"):
            assert settings.redirect_uris == ("https://gw/oauth/callback",)
        assert "OAUTH_REDIRECT_URI is deprecated" in caplog.text

    def test_new_setting_wins(self, make_settings):
        settings = make_settings(
            oauth_allowed_redirect_uris="https://new/cb", oauth_redirect_uri="https://old/cb"
        )
        assert settings.redirect_uris == ("https://new/cb",)


class TestPublicUrl:
    def test_explicit_url(self, make_settings):
        assert make_settings(mcp_url="https://gw.example.com/").public_url == (
            "https://gw.example.com"
        )

    def test_derived_from_host_and_port(self, make_settings):
        assert make_settings(mcp_host="localhost", mcp_port=9000).public_url == (
            "http://localhost:9000"
        )
