from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

PLACEHOLDER_SECRET_VALUES = frozenset(
    {
        "your_openai_api_key_here",
        "your_zoom_client_id_here",
        "your_zoom_client_secret_here",
        "your_zoom_account_id_here",
        "your_zoom_webhook_secret_token_here",
    },
)

DOWNLOAD_STRATEGY_NAMES = frozenset(
    {
        "bearer_header",
        "access_token_query",
        "passcode_query",
        "access_token_and_passcode_query",
    },
)


class Settings(BaseSettings):
    app_name: str = "Zoom Meeting Feedback Service"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    port: int = 3000
    zoom_webhook_secret_token: str = ""
    zoom_webhook_timestamp_tolerance_seconds: int = 0
    zoom_client_id: str = ""
    zoom_client_secret: str = ""
    zoom_account_id: str = ""
    zoom_oauth_grant_type: str = "account_credentials"
    zoom_oauth_scopes: Annotated[list[str], NoDecode] = []
    zoom_oauth_token_url: str = "https://zoom.us/oauth/token"
    zoom_api_base_url: str = "https://api.zoom.us/v2"
    zoom_api_timeout_seconds: float = 10.0
    zoom_token_timeout_seconds: float = 10.0
    zoom_download_timeout_seconds: float = 30.0
    zoom_api_download_strategies: Annotated[list[str], NoDecode] = ["bearer_header"]
    zoom_webhook_download_strategies: Annotated[list[str], NoDecode] = [
        "bearer_header",
        "access_token_query",
        "passcode_query",
        "access_token_and_passcode_query",
    ]
    zoom_transcript_source: str = "transcript"
    openai_api_key: str = ""
    openai_model: str = "gpt-4"
    openai_transcribe_model: str = "whisper-1"
    openai_transcribe_language: str = "en"
    openai_timeout_seconds: float = 60.0
    feedback_temperature: float = 0.7
    feedback_max_tokens: int = 2000
    max_audio_bytes: int = 25 * 1024 * 1024

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator(
        "zoom_webhook_secret_token",
        "zoom_client_id",
        "zoom_client_secret",
        "zoom_account_id",
        "openai_api_key",
        mode="before",
    )
    @classmethod
    def blank_out_placeholder_secrets(cls, value: str) -> str:
        cleaned = str(value).strip()
        if cleaned in PLACEHOLDER_SECRET_VALUES:
            return ""
        return cleaned

    @field_validator("zoom_oauth_scopes", mode="before")
    @classmethod
    def parse_oauth_scopes(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [scope for scope in value.replace(",", " ").split() if scope]
        return value

    @field_validator(
        "zoom_api_download_strategies",
        "zoom_webhook_download_strategies",
        mode="before",
    )
    @classmethod
    def parse_download_strategies(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            value = value.split(",")
        strategies: list[str] = []
        for raw_name in value:
            name = raw_name.strip().lower()
            if not name:
                continue
            if name not in DOWNLOAD_STRATEGY_NAMES:
                raise ValueError(f"Unknown download strategy: {name}")
            if name not in strategies:
                strategies.append(name)
        return strategies

    @field_validator("zoom_oauth_grant_type", mode="before")
    @classmethod
    def normalize_grant_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"client_credentials", "account_credentials"}:
            raise ValueError("zoom_oauth_grant_type must be client_credentials or account_credentials")
        return normalized

    @field_validator("zoom_transcript_source", mode="before")
    @classmethod
    def normalize_transcript_source(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"transcript", "audio"}:
            return "transcript"
        return normalized

    @field_validator("zoom_token_timeout_seconds", "zoom_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_zoom_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("zoom_download_timeout_seconds", mode="before")
    @classmethod
    def normalize_download_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 30.0
        return parsed_value

    @field_validator("openai_timeout_seconds", mode="before")
    @classmethod
    def normalize_openai_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 60.0
        return parsed_value

    @field_validator("feedback_max_tokens", mode="before")
    @classmethod
    def normalize_feedback_max_tokens(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 2000
        return parsed_value

    @property
    def zoom_credentials_configured(self) -> bool:
        if not (self.zoom_client_id and self.zoom_client_secret):
            return False
        if self.zoom_oauth_grant_type == "account_credentials":
            return bool(self.zoom_account_id)
        return True

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
