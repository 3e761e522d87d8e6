"""
tests/test_config.py -- Settings defaults, env parsing and cross-field validation.

Settings(_env_file=None) keeps a developer's local .env out of the picture.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings


class TestDefaults:
    def test_lifetimes(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.session_ttl_seconds == 3600
        assert settings.session_remember_ttl_seconds == 5 * 365 * 24 * 60 * 60
        assert settings.auth_code_ttl_seconds == 600
        assert settings.access_token_ttl_seconds == 3600

    def test_key_sizes_and_password_policy(self) -> None:
        settings = Settings(_env_file=None)
        assert settings.session_key_bytes == 64
        assert settings.auth_code_bytes == 64
        assert settings.access_token_bytes == 64
        assert settings.min_password_length == 15
        assert settings.min_user_age_years == 18

    def test_default_database_is_async_sqlite(self) -> None:
        assert Settings(_env_file=None).database_url.startswith("sqlite+aiosqlite:///")

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()


class TestEnvironment:
    def test_oauth_clients_parsed_from_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OAUTH_CLIENTS", '{"kiosk": "k-secret"}')
        monkeypatch.setenv("OAUTH_REDIRECT_URIS", '{"kiosk": ["https://kiosk.example/cb"]}')
        settings = Settings(_env_file=None)
        assert settings.oauth_clients == {"kiosk": "k-secret"}
        assert settings.oauth_redirect_uris == {"kiosk": ["https://kiosk.example/cb"]}

    def test_ttl_overridable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SESSION_TTL_SECONDS", "900")
        assert Settings(_env_file=None).session_ttl_seconds == 900


class TestValidation:
    @pytest.mark.parametrize("rounds", [3, 32])
    def test_bcrypt_rounds_out_of_range(self, rounds: int) -> None:
        with pytest.raises(ValidationError, match="BCRYPT_ROUNDS"):
            Settings(_env_file=None, bcrypt_rounds=rounds)

    def test_remember_ttl_must_exceed_session_ttl(self) -> None:
        with pytest.raises(ValidationError, match="SESSION_REMEMBER_TTL_SECONDS"):
            Settings(_env_file=None, session_ttl_seconds=7200, session_remember_ttl_seconds=3600)

    def test_short_keys_rejected(self) -> None:
        with pytest.raises(ValidationError, match="ACCESS_TOKEN_BYTES"):
            Settings(_env_file=None, access_token_bytes=8)

    def test_client_without_redirect_uris_rejected(self) -> None:
        with pytest.raises(ValidationError, match="OAUTH_REDIRECT_URIS has no entry for client"):
            Settings(
                _env_file=None,
                oauth_clients={"alexa": "a-secret", "kiosk": "k-secret"},
                oauth_redirect_uris={"alexa": ["https://alexa.example/callback"]},
            )

    def test_client_with_empty_redirect_list_rejected(self) -> None:
        with pytest.raises(ValidationError, match="kiosk"):
            Settings(
                _env_file=None,
                oauth_clients={"kiosk": "k-secret"},
                oauth_redirect_uris={"kiosk": []},
            )
