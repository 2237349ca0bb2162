"""
Configuration for the MongoDB stream connector.

`MongoStreamConfig` is the static, validated configuration a connector is
built from. `MongoStreamSettings` loads the same fields through Pydantic
Settings: from a .env file if present, then environment variables, then
defaults.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_URI_SCHEMES = ("mongodb://", "mongodb+srv://")


class MongoStreamConfig(BaseModel):
    """Connector configuration, validated at construction."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    uri: str = Field(..., description="MongoDB connection string")
    database: str = Field(..., description="Database holding the watched collection")
    collection: str = Field(..., description="Collection to snapshot and tail")
    stream_snapshot: bool = Field(
        default=False,
        description="Emit every existing document as an insert before tailing"
    )

    # Change stream settings
    max_await_time_ms: int = Field(
        default=1000,
        gt=0,
        description="Longest a single change stream poll blocks; bounds close() latency"
    )
    batch_size: int = Field(default=100, gt=0, description="Change stream batch size")
    server_selection_timeout_ms: int = Field(
        default=10000,
        gt=0,
        description="Server selection timeout for the client"
    )

    # Pipeline settings
    channel_capacity: int = Field(
        default=0,
        ge=0,
        description="Max buffered events between pump and reader (0 = unbounded)"
    )
    open_tail_before_snapshot: bool = Field(
        default=False,
        description="Open the change stream before the snapshot scan starts"
    )
    verify_connection: bool = Field(
        default=True,
        description="Ping the server during connect to surface URI/auth errors early"
    )
    shutdown_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds close() waits for the pump thread to exit"
    )

    @field_validator("uri")
    @classmethod
    def validate_uri(cls, v: str) -> str:
        if not v.startswith(_URI_SCHEMES):
            raise ValueError(f"uri must start with one of: {_URI_SCHEMES}")
        return v

    @field_validator("database", "collection")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v


class MongoStreamSettings(BaseSettings):
    """Environment-driven connector settings."""

    model_config = SettingsConfigDict(
        env_prefix="MONGO_STREAM_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    uri: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    database: str = Field(default="testdb", description="MongoDB database name")
    collection: Optional[str] = Field(default=None, description="MongoDB collection name")
    stream_snapshot: bool = Field(default=False, description="Snapshot before tailing")

    max_await_time_ms: int = Field(default=1000, description="Change stream poll timeout")
    batch_size: int = Field(default=100, description="Change stream batch size")
    server_selection_timeout_ms: int = Field(default=10000, description="Server selection timeout")
    channel_capacity: int = Field(default=0, description="Channel capacity (0 = unbounded)")
    open_tail_before_snapshot: bool = Field(default=False, description="Open watch before scan")
    verify_connection: bool = Field(default=True, description="Ping during connect")
    shutdown_timeout: float = Field(default=5.0, description="Pump join timeout in seconds")

    log_level: str = Field(default="INFO", description="Log level for connector loggers")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v.upper()

    def to_config(self, **overrides) -> MongoStreamConfig:
        """Build a validated connector config, applying keyword overrides."""
        data = self.model_dump(exclude={"log_level"})
        data.update(overrides)
        if not data.get("collection"):
            raise ValueError("collection must be set (MONGO_STREAM_COLLECTION)")
        return MongoStreamConfig(**data)


# Global settings instance
_settings: Optional[MongoStreamSettings] = None


def get_settings() -> MongoStreamSettings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = MongoStreamSettings()
    return _settings


def reload_settings() -> MongoStreamSettings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = MongoStreamSettings()
    return _settings
