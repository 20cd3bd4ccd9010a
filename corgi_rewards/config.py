# mypy: disable-error-code="call-arg"
from typing import Literal, Optional

from pydantic import (
    Field,
    PostgresDsn,
    RedisDsn,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # API
    API_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Corgi Buddy Rewards API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Server
    PORT: int = 8000

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # Authentication
    API_AUTH_TOKEN: SecretStr

    # Database
    DB_HOST: str = "db"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: SecretStr = SecretStr("")
    DB_NAME: str = "app"
    DATABASE_URL: Optional[str] = None

    # Redis
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: SecretStr = SecretStr("")
    REDIS_URL: Optional[RedisDsn] = None

    # Cache TTL (in seconds)
    CACHE_TTL: int = 120  # 2 minutes
    BALANCE_CACHE_TTL: int = 30

    # TON
    TON_NETWORK: Literal["testnet", "mainnet"] = "testnet"
    TON_ENDPOINT: Optional[str] = None  # liteserver global config URL
    TON_OPERATOR_MNEMONIC: SecretStr
    JETTON_MASTER_ADDRESS: str
    JETTON_DECIMALS: int = Field(default=9, ge=0, le=18)

    # Thresholds, in smallest units
    OPERATOR_TON_MIN_BALANCE: int = Field(default=1_000_000_000, ge=0)
    OPERATOR_JETTON_MIN_BALANCE: int = Field(
        default=1_000_000_000_000, ge=0
    )
    TRANSFER_GAS_AMOUNT: int = Field(default=50_000_000, gt=0)  # 0.05 TON
    TRANSFER_FORWARD_AMOUNT: int = Field(default=1, ge=0)

    # Reward pipeline
    BROADCAST_TIMEOUT: float = 30.0
    # Seconds a signed external message stays acceptable to the network
    TRANSFER_VALID_FOR: int = Field(default=60, gt=0)
    SEQNO_POLL_INTERVAL: float = Field(default=2.0, gt=0)
    CHAIN_READ_RETRIES: int = 3
    CHAIN_READ_RETRY_DELAY: float = 0.5

    # Reconciliation
    RECONCILE_BATCH_SIZE: int = 50
    RECONCILE_TX_LOOKBACK: int = 64
    RECONCILE_MAX_AGE: int = 60 * 60  # 1 hour
    # Pending rows younger than this may still be in the synchronous path
    RECONCILE_PENDING_GRACE: int = 10 * 60
    RECONCILE_INTERVAL: int = 60
    BALANCE_MONITOR_INTERVAL: int = 5 * 60

    @field_validator("TON_OPERATOR_MNEMONIC")
    @classmethod
    def validate_mnemonic(cls, value: SecretStr) -> SecretStr:
        words = value.get_secret_value().split()
        if len(words) != 24:
            raise ValueError(
                "TON_OPERATOR_MNEMONIC must contain exactly 24 words"
            )
        return value

    @model_validator(mode="after")
    def build_database_url(self) -> "Settings":
        if not self.DATABASE_URL:
            self.DATABASE_URL = str(
                PostgresDsn.build(
                    scheme="postgresql+asyncpg",
                    username=self.DB_USER,
                    password=self.DB_PASSWORD.get_secret_value(),
                    host=self.DB_HOST,
                    port=self.DB_PORT,
                    path=self.DB_NAME,
                )
            )
        return self

    @model_validator(mode="after")
    def build_redis_url(self) -> "Settings":
        if not self.REDIS_URL:
            self.REDIS_URL = RedisDsn.build(
                scheme="redis",
                username="default",
                password=self.REDIS_PASSWORD.get_secret_value(),
                host=self.REDIS_HOST,
                port=self.REDIS_PORT,
                path="/0",
            )
        return self

    @property
    def operator_mnemonic(self) -> list[str]:
        return self.TON_OPERATOR_MNEMONIC.get_secret_value().split()

    class Config:
        env_file = ".env"
        case_sensitive = True
        validate_default = True


settings = Settings()
