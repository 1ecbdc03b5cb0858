"""Unit tests for startup configuration: secret key validation and settings.

No database required.
"""

from __future__ import annotations

import logging

import pytest

from survey_lifecycle.config import _DEFAULT_SECRET_KEYS, Settings, build_database_url
from survey_lifecycle.main import check_secret_key


class TestDefaultSecretKeys:
    def test_default_keys_tuple_has_expected_entries(self):
        assert "change-me-in-production" in _DEFAULT_SECRET_KEYS
        assert "dev-secret-key-change-in-production" in _DEFAULT_SECRET_KEYS


class TestCheckSecretKey:
    @pytest.mark.parametrize("environment", ["production", "staging"])
    @pytest.mark.parametrize("key", list(_DEFAULT_SECRET_KEYS))
    def test_default_key_outside_development_raises(self, key, environment):
        with pytest.raises(RuntimeError, match="SECRET_KEY"):
            check_secret_key(key, environment)

    def test_default_key_in_development_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="survey_lifecycle.main"):
            check_secret_key("change-me-in-production", "development")
        assert any("default SECRET_KEY" in r.getMessage() for r in caplog.records)

    def test_custom_key_passes_everywhere(self):
        check_secret_key("a-long-random-value", "production")
        check_secret_key("a-long-random-value", "development")


class TestSettings:
    def test_database_url_uses_asyncpg(self):
        assert Settings().database_url.drivername == "postgresql+asyncpg"

    def test_tcp_host(self):
        url = build_database_url("u", "p", "db.internal", "6543", "surveys")
        assert url.host == "db.internal"
        assert url.port == 6543
        assert url.database == "surveys"

    def test_socket_directory_host(self):
        url = build_database_url("u", "p", "/tmp/_pgdata", "5432", "surveys")
        assert url.host is None
        assert url.query["host"] == "/tmp/_pgdata"
        assert url.port == 5432

    def test_jwt_claim_defaults(self):
        assert Settings.JWT_ISSUER
        assert Settings.JWT_AUDIENCE
