"""
Configuration management for the Profile Sync service.
Handles environment variables and settings for the record store, IPFS and the profile registry.
"""

from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Profile Sync"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:4321",
        "http://localhost:5173",
    ]
    ALLOWED_HOSTS: List[str] = ["localhost"]

    # Record store - MongoDB
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "profile_sync"
    IDENTITY_COLLECTION: str = "identities"

    # Redis for sessions and saga locks
    REDIS_URI: str = "redis://localhost:6379"
    SAGA_LOCK_BACKEND: str = "memory"  # "memory" or "redis"
    SAGA_LOCK_TTL_SECONDS: int = 60 * 60
    SESSION_KEY_PREFIX: str = "profile_sync:session:"

    # IPFS Configuration
    IPFS_GATEWAY_URL_POST: str = "http://127.0.0.1:5001/api/v0/add"
    IPFS_GATEWAY_URL_GET: str = "http://127.0.0.1:8080/ipfs"
    IPFS_TIMEOUT_SECONDS: float = 30.0
    IPFS_MAX_RETRIES: int = 3
    IPFS_RETRY_BACKOFF_SECONDS: float = 0.5

    # Batch packing
    BATCH_MAX_ITEMS: int = 666
    PACK_FETCH_CONCURRENCY: int = 8

    # Blockchain Configuration
    TESTNET_RPC_URL: Optional[str] = None
    EVM_RPC_URL: str = "https://testnet-rpc.monad.xyz"
    EVM_CHAIN_ID: int = 41434
    REGISTRY_ADDRESS: Optional[str] = None
    REGISTRY_DEFAULT_GAS: int = 300000
    TX_RECEIPT_TIMEOUT_SECONDS: int = 120

    # Private key for the operator signer (optional, dev only)
    EVM_PRIVATE_KEY: Optional[str] = None

    # Commit retry after ledger confirmation
    COMMIT_RETRY_BACKOFF_SECONDS: float = 0.5
    COMMIT_RETRY_MAX_BACKOFF_SECONDS: float = 30.0

    # Media
    MEDIA_BASE_URL: str = "http://localhost:4321"
    MEDIA_PROJECTS_PATH: str = "/projects"
    IMAGE_PLACEHOLDER_URL: str = "/images/project-placeholder.svg"

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def ACTIVE_RPC_URL(self) -> str:
        """Get active RPC URL (TESTNET_RPC_URL takes priority over EVM_RPC_URL)."""
        return self.TESTNET_RPC_URL or self.EVM_RPC_URL

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("ALLOWED_HOSTS", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v):
        """Parse allowed hosts from string or list."""
        if isinstance(v, str):
            return [host.strip() for host in v.split(",")]
        return v

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment setting."""
        allowed_envs = ["development", "staging", "production"]
        if v not in allowed_envs:
            raise ValueError(f"Environment must be one of {allowed_envs}")
        return v

    @field_validator("SAGA_LOCK_BACKEND")
    @classmethod
    def validate_lock_backend(cls, v):
        """Validate saga lock backend."""
        if v not in ("memory", "redis"):
            raise ValueError("SAGA_LOCK_BACKEND must be 'memory' or 'redis'")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Create global settings instance
settings = Settings()


def is_production() -> bool:
    """Check if running in production environment."""
    return settings.ENVIRONMENT == "production"
