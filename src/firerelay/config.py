"""Application configuration via environment variables.

Uses pydantic-settings, split in two groups:

- FirebaseCredentials: the service-account fields, read from FIREBASE_* vars
  (the same names the Firebase console export uses).
- Settings: everything about the relay itself, read from RELAY_* vars.
  The listen port also honours plain PORT, which most PaaS runtimes set.

Learn: Missing credentials are not a validation error here. The decision
between failing fast and running without upstream events belongs to the
app lifespan, driven by Settings.on_missing_credentials.
"""

from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

# Env var names of the credential fields that must be present.
REQUIRED_CREDENTIALS = {
    "project_id": "FIREBASE_PROJECT_ID",
    "private_key": "FIREBASE_PRIVATE_KEY",
    "client_email": "FIREBASE_CLIENT_EMAIL",
}


class FirebaseCredentials(BaseSettings):
    """Service-account credential fields. Set via FIREBASE_* env vars."""

    type: str = "service_account"
    project_id: Optional[str] = None
    private_key_id: Optional[str] = None
    private_key: Optional[str] = None
    client_email: Optional[str] = None
    client_id: Optional[str] = None
    auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    token_uri: str = "https://oauth2.googleapis.com/token"
    auth_provider_x509_cert_url: str = Field(
        "https://www.googleapis.com/oauth2/v1/certs",
        validation_alias="FIREBASE_AUTH_PROVIDER_CERT_URL",
    )
    client_x509_cert_url: Optional[str] = Field(
        None,
        validation_alias="FIREBASE_CLIENT_CERT_URL",
    )

    model_config = {"env_prefix": "FIREBASE_", "populate_by_name": True}

    @field_validator("private_key")
    @classmethod
    def unescape_newlines(cls, value: Optional[str]) -> Optional[str]:
        """Keys pasted into a single env line carry literal \\n sequences."""
        if value:
            return value.replace("\\n", "\n")
        return value

    def missing(self) -> tuple[str, ...]:
        """Env var names of required fields that are unset or empty."""
        return tuple(
            env_name
            for field_name, env_name in REQUIRED_CREDENTIALS.items()
            if not getattr(self, field_name)
        )

    def as_certificate(self) -> dict[str, str]:
        """Dict accepted by firebase_admin.credentials.Certificate."""
        return {k: v for k, v in self.model_dump().items() if v is not None}


class Settings(BaseSettings):
    """Relay configuration. Set via RELAY_* env vars."""

    # Server
    host: str = "0.0.0.0"
    port: int = Field(8080, validation_alias=AliasChoices("RELAY_PORT", "PORT"))

    # Routing: "room_scoped" fans out to the entity hierarchy and accepts
    # client commands; "broadcast_only" sends everything to "*" and ignores them.
    mode: Literal["room_scoped", "broadcast_only"] = "room_scoped"

    # What to do when FIREBASE_PROJECT_ID / _PRIVATE_KEY / _CLIENT_EMAIL are
    # missing: "fail_fast" aborts startup, "degraded" serves clients without
    # upstream events.
    on_missing_credentials: Literal["degraded", "fail_fast"] = "degraded"

    # Delivery
    send_timeout: float = 5.0  # seconds per send before the connection is dropped

    # Upstream reconnect backoff (seconds)
    backoff_initial: float = 1.0
    backoff_max: float = 60.0
    emit_initial_snapshot: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_prefix": "RELAY_", "populate_by_name": True}

    @model_validator(mode="after")
    def validate_timings(self):
        """Backoff bounds and timeouts must be positive and ordered."""
        if self.send_timeout <= 0:
            raise ValueError("RELAY_SEND_TIMEOUT must be positive")
        if self.backoff_initial <= 0:
            raise ValueError("RELAY_BACKOFF_INITIAL must be positive")
        if self.backoff_max < self.backoff_initial:
            raise ValueError(
                "RELAY_BACKOFF_MAX must be greater than or equal to "
                "RELAY_BACKOFF_INITIAL"
            )
        return self


# Singleton, import this everywhere
settings = Settings()
