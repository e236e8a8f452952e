"""
Configuration loader for the photo variant service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

FAILURE_POLICIES = {"drop", "dead_letter"}


class Settings(BaseSettings):
    # MongoDB / GridFS content store
    mongo_url: str = Field("mongodb://localhost:27017")
    mongo_db_name: str = Field("photos")
    gridfs_bucket: str = Field("images")

    # RabbitMQ work queue
    rabbitmq_host: str = Field("localhost")
    rabbitmq_port: int = Field(5672)
    rabbitmq_user: str = Field("guest")
    rabbitmq_password: str = Field("guest")
    rabbitmq_vhost: str = Field("/")
    rabbitmq_url: Optional[str] = Field(None)
    queue_name: str = Field("images")
    heartbeat_seconds: int = Field(60)
    reconnect_delay_seconds: float = Field(7.0)
    dead_letter_exchange: Optional[str] = Field(None)
    failure_policy: str = Field("drop")

    # Variant rendering
    scratch_dir: Path = Field(Path("./uploads"))
    jpeg_quality: int = Field(60)

    # API
    api_host: str = Field("0.0.0.0")
    api_port: int = Field(8000)
    log_level: str = Field("INFO")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("failure_policy")
    @classmethod
    def validate_failure_policy(cls, v: str) -> str:
        if v not in FAILURE_POLICIES:
            raise ValueError("FAILURE_POLICY must be one of drop|dead_letter")
        return v

    @field_validator("jpeg_quality")
    @classmethod
    def validate_jpeg_quality(cls, v: int) -> int:
        if not 1 <= v <= 95:
            raise ValueError("JPEG_QUALITY must be between 1 and 95")
        return v

    def amqp_url(self) -> str:
        """
        Return the broker URL with the heartbeat negotiated as a query option.

        An explicit RABBITMQ_URL wins over the individual host/credential
        variables.
        """
        if self.rabbitmq_url:
            base = self.rabbitmq_url
        else:
            base = "amqp://{user}:{password}@{host}:{port}/{vhost}".format(
                user=quote(self.rabbitmq_user, safe=""),
                password=quote(self.rabbitmq_password, safe=""),
                host=self.rabbitmq_host,
                port=self.rabbitmq_port,
                vhost=quote(self.rabbitmq_vhost, safe=""),
            )
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}heartbeat={self.heartbeat_seconds}"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
