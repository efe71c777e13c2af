"""
Unit tests for AppSettings — environment variables with the "__" delimiter.

The .env file is disabled with _env_file=None so only the variables set
by monkeypatch are visible.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from sri_signer.config import AppSettings
from sri_signer.domain.catalog import DEFAULT_ENDPOINTS, Environment


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ENVIRONMENT", "XSD_DIR", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def _settings() -> AppSettings:
    return AppSettings(_env_file=None)


class TestDefaults:
    def test_defaults(self) -> None:
        settings = _settings()

        assert settings.environment is Environment.TEST
        assert settings.transport.max_attempts == 3
        assert settings.transport.retry_delay_ms == 500
        assert settings.authorization.attempts == 3
        assert settings.signature.digest == "sha1"
        assert settings.signature.include_key_info_reference is True
        assert settings.certificate.expiry_warning_days == 30
        assert settings.xsd_dir is None

    def test_endpoint_map_defaults_to_published_urls(self) -> None:
        assert _settings().endpoints.as_map() == DEFAULT_ENDPOINTS


class TestEnvironmentVariables:
    @pytest.mark.parametrize(("raw", "expected"), [("2", Environment.PRODUCTION), ("pruebas", Environment.TEST)])
    def test_environment_aliases(
        self, monkeypatch: pytest.MonkeyPatch, raw: str, expected: Environment
    ) -> None:
        monkeypatch.setenv("ENVIRONMENT", raw)
        assert _settings().environment is expected

    def test_unknown_environment_is_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "staging")
        with pytest.raises(ValidationError):
            _settings()

    def test_nested_values(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """
        GIVEN TRANSPORT__MAX_ATTEMPTS, SIGNATURE__DIGEST and CERTIFICATE__* variables
        WHEN AppSettings is loaded
        THEN the nested sections are populated and the password stays secret.
        """
        monkeypatch.setenv("TRANSPORT__MAX_ATTEMPTS", "5")
        monkeypatch.setenv("SIGNATURE__DIGEST", "SHA-256")
        monkeypatch.setenv("CERTIFICATE__P12_PATH", str(tmp_path / "firma.p12"))
        monkeypatch.setenv("CERTIFICATE__PASSWORD", "secreto")
        monkeypatch.setenv("ENDPOINTS__TEST_RECEPTION", "https://sri.example/recepcion")

        settings = _settings()

        assert settings.transport.max_attempts == 5
        assert settings.signature.digest == "sha256"
        assert settings.certificate.p12_path == tmp_path / "firma.p12"
        assert settings.certificate.password.get_secret_value() == "secreto"
        assert "secreto" not in repr(settings)
        assert settings.endpoints.as_map()[Environment.TEST].reception == "https://sri.example/recepcion"

    def test_invalid_digest(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIGNATURE__DIGEST", "md5")
        with pytest.raises(ValidationError):
            _settings()

    def test_zero_attempts_is_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRANSPORT__MAX_ATTEMPTS", "0")
        with pytest.raises(ValidationError):
            _settings()
