"""Configuration for the HTTP server."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the flow HTTP API.

    Credentials are never configured here; callers send them per request
    (``aiConfig`` body field or the API-key cookie).
    """

    host: str = Field(default="127.0.0.1", validation_alias="LMFLOW_HOST")
    port: int = Field(default=8000, validation_alias="LMFLOW_PORT", ge=1, le=65535)

    # Dev-friendly CORS. Override via LMFLOW_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        validation_alias="LMFLOW_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    api_key_cookie: str = Field(
        default="ai-api-key",
        validation_alias="LMFLOW_API_KEY_COOKIE",
        description="Name of the HTTP-only cookie that may carry the caller's API key.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
