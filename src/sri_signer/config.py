"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup
  - Keep secrets (the PKCS#12 password) out of source control and logs

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var TRANSPORT__MAX_ATTEMPTS maps to transport.max_attempts,
CERTIFICATE__PASSWORD maps to certificate.password, etc.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sri_signer.domain.catalog import DEFAULT_ENDPOINTS, EndpointSet, Environment

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class EndpointSettings(BaseModel):
    """
    Reception and authorization service URLs per environment.

    Defaults are the authority's published offline endpoints.
    """

    test_reception: str = DEFAULT_ENDPOINTS[Environment.TEST].reception
    test_authorization: str = DEFAULT_ENDPOINTS[Environment.TEST].authorization
    production_reception: str = DEFAULT_ENDPOINTS[Environment.PRODUCTION].reception
    production_authorization: str = DEFAULT_ENDPOINTS[Environment.PRODUCTION].authorization

    def as_map(self) -> dict[Environment, EndpointSet]:
        return {
            Environment.TEST: EndpointSet(self.test_reception, self.test_authorization),
            Environment.PRODUCTION: EndpointSet(
                self.production_reception, self.production_authorization
            ),
        }


class TransportSettings(BaseModel):
    """Per-attempt timeout and retry budget of the SOAP calls."""

    timeout_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, description="Total attempts, first one included")
    retry_delay_ms: int = Field(default=500, ge=0)


class AuthorizationSettings(BaseModel):
    """Authorization polling after a document is received."""

    attempts: int = Field(default=3, ge=1)
    interval_seconds: float = Field(default=3.0, ge=0)


class SignatureSettings(BaseModel):
    """
    Signature algorithm selection.

    `digest` applies to every DigestMethod and picks the signature method
    for the key family of the certificate (RSA-SHA1 by default).
    """

    digest: str = Field(default="sha1")
    include_key_info_reference: bool = Field(default=True)

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, value: str) -> str:
        normalized = value.strip().lower().replace("-", "")
        if normalized not in ("sha1", "sha256"):
            raise ValueError(f"digest must be sha1 or sha256, got {value!r}")
        return normalized


class CertificateSettings(BaseModel):
    """PKCS#12 credential used by the CLI when no path is given on the command line."""

    p12_path: Path | None = Field(default=None, description="Path to the .p12/.pfx archive")
    password: SecretStr | None = Field(default=None, description="Archive password")
    openssl_bin: str | None = Field(default=None, description="openssl binary for legacy archives")
    expiry_warning_days: int = Field(default=30, ge=0)


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values

    env_nested_delimiter="__" maps TRANSPORT__TIMEOUT_SECONDS → transport.timeout_seconds,
    CERTIFICATE__P12_PATH → certificate.p12_path, etc.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Environment = Field(default=Environment.TEST)
    endpoints: EndpointSettings = Field(default_factory=EndpointSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    authorization: AuthorizationSettings = Field(default_factory=AuthorizationSettings)
    signature: SignatureSettings = Field(default_factory=SignatureSettings)
    certificate: CertificateSettings = Field(default_factory=CertificateSettings)

    xsd_dir: Path | None = Field(default=None, description="Directory holding the official XSD files")
    log_level: str = Field(default="INFO")

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, value: object) -> object:
        """Accept '1'/'2', TEST/PRODUCTION and pruebas/produccion."""
        if isinstance(value, str):
            return Environment.parse(value)
        return value
