"""Unit tests for core/config.py -- Settings validation and duration parsing.

Settings are built directly (not through get_settings()) so each test sees
its own values; explicit keyword arguments override the environment.
"""

import pytest

from core.config import Settings, parse_duration

GOOD_ACCESS = "a" * 32
GOOD_REFRESH = "b" * 32


class TestParseDuration:
    @pytest.mark.parametrize(
        "value, seconds",
        [(45, 45), ("45", 45), ("30s", 30), ("30m", 1800), ("4h", 14400), ("7d", 604800), (" 2H ", 7200)],
    )
    def test_valid(self, value, seconds):
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", ["", "abc", "4w", "-5", "1.5h", 0, "0m", True])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestSecrets:
    def test_production_requires_secrets(self):
        with pytest.raises(ValueError, match="JWT_SECRET"):
            Settings(debug=False, jwt_secret="", jwt_refresh_secret="")

    def test_production_requires_refresh_secret(self):
        with pytest.raises(ValueError, match="JWT_REFRESH_SECRET"):
            Settings(debug=False, jwt_secret=GOOD_ACCESS, jwt_refresh_secret="")

    def test_debug_generates_distinct_secrets(self):
        settings = Settings(debug=True, jwt_secret="", jwt_refresh_secret="")
        assert len(settings.jwt_secret) >= 32
        assert len(settings.jwt_refresh_secret) >= 32
        assert settings.jwt_secret != settings.jwt_refresh_secret

    def test_short_secret_rejected_even_in_debug(self):
        with pytest.raises(ValueError, match="at least 32"):
            Settings(debug=True, jwt_secret="short", jwt_refresh_secret=GOOD_REFRESH)

    def test_secrets_must_differ(self):
        with pytest.raises(ValueError, match="must be different"):
            Settings(debug=False, jwt_secret=GOOD_ACCESS, jwt_refresh_secret=GOOD_ACCESS)

    def test_valid_production_settings(self):
        settings = Settings(debug=False, jwt_secret=GOOD_ACCESS, jwt_refresh_secret=GOOD_REFRESH)
        assert settings.jwt_secret == GOOD_ACCESS
        assert settings.jwt_refresh_secret == GOOD_REFRESH


class TestExpiry:
    def test_defaults(self):
        settings = Settings(debug=True, jwt_secret=GOOD_ACCESS, jwt_refresh_secret=GOOD_REFRESH)
        assert settings.jwt_expire_seconds == 4 * 3600
        assert settings.jwt_refresh_expire_seconds == 7 * 86400

    def test_duration_strings(self):
        settings = Settings(
            debug=True,
            jwt_secret=GOOD_ACCESS,
            jwt_refresh_secret=GOOD_REFRESH,
            jwt_expire_seconds="15m",
            jwt_refresh_expire_seconds="30d",
        )
        assert settings.jwt_expire_seconds == 900
        assert settings.jwt_refresh_expire_seconds == 30 * 86400

    def test_invalid_duration_rejected(self):
        with pytest.raises(ValueError):
            Settings(debug=True, jwt_secret=GOOD_ACCESS, jwt_refresh_secret=GOOD_REFRESH, jwt_expire_seconds="soon")
