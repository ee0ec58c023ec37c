"""
Configuration — Pydantic v2 Settings (env / .env)
=================================================

Purpose
-------
Centralized, strongly-typed application configuration using:
- Pydantic v2 `BaseSettings` for environment-driven values
- `pydantic-settings` v2 for `.env` loading and model config

Load Order & Behavior
---------------------
- Values are read from the environment; if not present, `.env` is used.
- Every field has a local-development default (SQLite database, no S3 credentials),
  so the service and the test-suite can import settings without a `.env` file.
- `extra="ignore"`: unknown env vars are ignored (not an error).

Usage
-----
from chat_backend.database.config.config import settings

# Example
db_driver = settings.DB_DRIVER_NAME
messages_limit = settings.entitlements_for("user")["messages"]

Security
--------
- Never commit secrets or the `.env` file to source control.
- `SECRET_KEY` must be overridden outside local development.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application configuration settings loaded from environment variables
    or a `.env` file. Provides strongly typed access to environment values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    DB_DRIVER_NAME: str = Field("sqlite", description="SQLAlchemy driver name (e.g., `postgresql+psycopg2`, `sqlite`).")
    DB_USERNAME: str | None = Field(None, description="Database username credential.")
    DB_PASSWORD: str | None = Field(None, description="Database password credential.")
    DB_HOST: str | None = Field(None, description="Hostname or IP address of the database server.")
    DB_DATABASE_NAME: str = Field("chat.db", description="Name of the application's database (file path for SQLite).")

    # HTTP / auth
    FRONTEND_URL: str = Field("http://localhost:5173", description="Base URL of the frontend client application (CORS origin).")
    SECRET_KEY: str = Field("change-me", description="Secret key for signing and verifying JWT access tokens.")
    ALGORITHM: str = Field("HS256", description="JWT signing algorithm.")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(60, description="Duration (in minutes) before access tokens expire.")

    # Model invocation
    API_KEY: str = Field("", description="OpenAI API key used by the chat model client.")
    OPEN_AI_MODEL: str = Field("gpt-4o", description="OpenAI chat model name.")
    GENERATE_TITLES: bool = Field(True, description="Ask the model for a short conversation title on creation.")

    # Object storage
    AWS_ACCESS_KEY: str | None = Field(None, description="AWS access key ID.")
    AWS_SECRET_KEY: str | None = Field(None, description="AWS secret access key.")
    REGION: str = Field("eu-central-1", description="AWS region name.")
    BUCKET_NAME: str = Field("chat-files", description="S3 bucket holding uploaded and generated files.")
    STORAGE_PUBLIC_URL: str = Field(
        "https://chat-files.s3.eu-central-1.amazonaws.com",
        description="Public base URL under which stored objects are served.",
    )

    # Chat limits
    CHAT_CHARACTER_MAX_LIMIT: int = Field(20000, description="Maximum characters in a single text part.")
    CHAT_FILES_MAX_LIMIT: int = Field(5, description="Maximum file parts in a single inbound turn.")
    CHAT_ACCEPTED_MEDIA_TYPES: list[str] = Field(
        default=[
            "image/png",
            "image/jpeg",
            "image/gif",
            "image/webp",
            "application/pdf",
            "text/plain",
            "text/markdown",
            "text/csv",
            "application/json",
        ],
        description="Media types accepted for file parts.",
    )
    CHAT_MAX_DURATION_SECONDS: float = Field(280.0, description="Upper bound for one streamed model invocation.")
    CHAT_MAX_TOOL_STEPS: int = Field(10, description="Maximum model steps when tools are called.")
    COMMIT_RETRY_ATTEMPTS: int = Field(2, description="Attempts for post-stream persistence calls.")

    # Quota entitlements (per rolling window)
    QUOTA_WINDOW_HOURS: int = Field(24, description="Length of the rolling quota window in hours.")
    QUOTA_COUNT_INPUT_TOKENS: bool = Field(False, description="Also charge input tokens to the token counter.")
    QUOTA_GUEST_MESSAGES: int = Field(10)
    QUOTA_GUEST_TOKENS: int = Field(20000)
    QUOTA_GUEST_FILES: int = Field(3)
    QUOTA_USER_MESSAGES: int = Field(100)
    QUOTA_USER_TOKENS: int = Field(200000)
    QUOTA_USER_FILES: int = Field(20)
    QUOTA_ADMIN_MESSAGES: int = Field(1000)
    QUOTA_ADMIN_TOKENS: int = Field(2000000)
    QUOTA_ADMIN_FILES: int = Field(200)

    def entitlements_for(self, role: str) -> dict[str, int]:
        """
        Return the per-resource limits for a user role.

        Unknown roles get guest entitlements.
        """
        role = (role or "guest").upper()
        if role not in ("GUEST", "USER", "ADMIN"):
            role = "GUEST"
        return {
            "messages": getattr(self, f"QUOTA_{role}_MESSAGES"),
            "tokens": getattr(self, f"QUOTA_{role}_TOKENS"),
            "files": getattr(self, f"QUOTA_{role}_FILES"),
        }


# Singleton instance of Settings, ready to be imported across the app
settings = Settings()
"""Defines a Settings object that contains the contents of the .env file"""
