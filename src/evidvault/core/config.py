"""Application configuration using Pydantic BaseSettings."""

import logging
from decimal import Decimal

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Payment token amounts are configured in whole units and converted once.
TOKEN_DECIMALS = 18


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Pin Store (Pinata)
    pinata_jwt: str = Field(default="", alias="PINATA_JWT")
    pinata_gateway: str = Field(default="gateway.pinata.cloud", alias="PINATA_GATEWAY")
    pinata_fallback_gateways: str = Field(
        default="ipfs.io,dweb.link", alias="PINATA_FALLBACK_GATEWAYS"
    )
    pin_upload_timeout_seconds: float = Field(default=60.0, alias="PIN_UPLOAD_TIMEOUT_SECONDS")
    pin_download_timeout_seconds: float = Field(
        default=30.0, alias="PIN_DOWNLOAD_TIMEOUT_SECONDS"
    )
    max_upload_bytes: int = Field(default=100 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    # Durable Storage (Filecoin)
    filecoin_rpc_url: str = Field(
        default="https://api.calibration.node.glif.io/rpc/v1", alias="FILECOIN_RPC_URL"
    )
    filecoin_private_key: str = Field(default="", alias="FILECOIN_PRIVATE_KEY")
    storage_provider_url: str = Field(default="", alias="STORAGE_PROVIDER_URL")
    storage_provider_token: str = Field(default="", alias="STORAGE_PROVIDER_TOKEN")
    deal_duration_seconds: int = Field(default=180 * 24 * 3600, alias="DEAL_DURATION_SECONDS")
    storage_timeout_seconds: float = Field(default=120.0, alias="STORAGE_TIMEOUT_SECONDS")
    direct_deal_method: str = Field(
        default="Filecoin.ClientStatelessDeal", alias="DIRECT_DEAL_METHOD"
    )

    # Payment Gate
    payments_contract_address: str = Field(default="", alias="PAYMENTS_CONTRACT_ADDRESS")
    payment_token_address: str = Field(default="", alias="PAYMENT_TOKEN_ADDRESS")
    payment_token_symbol: str = Field(default="USDFC", alias="PAYMENT_TOKEN_SYMBOL")
    min_balance: Decimal = Field(default=Decimal("1"), alias="MIN_BALANCE")
    deposit_amount: Decimal = Field(default=Decimal("10"), alias="DEPOSIT_AMOUNT")
    setup_timeout_seconds: float = Field(default=15.0, alias="SETUP_TIMEOUT_SECONDS")
    transaction_timeout_seconds: int = Field(default=180, alias="TRANSACTION_TIMEOUT_SECONDS")
    # Storage service operator approval (rate and lockup allowances on the payments contract)
    storage_service_address: str = Field(default="", alias="STORAGE_SERVICE_ADDRESS")
    rate_allowance: Decimal = Field(default=Decimal("10"), alias="RATE_ALLOWANCE")
    lockup_allowance: Decimal = Field(default=Decimal("1000"), alias="LOCKUP_ALLOWANCE")
    max_lockup_period: int = Field(default=86400, alias="MAX_LOCKUP_PERIOD")

    # Migration Orchestrator
    poll_interval_seconds: int = Field(default=5, alias="POLL_INTERVAL_SECONDS")
    worker_batch_size: int = Field(default=10, alias="WORKER_BATCH_SIZE")
    migration_timeout_seconds: float = Field(default=600.0, alias="MIGRATION_TIMEOUT_SECONDS")
    stale_upload_seconds: int = Field(default=1800, alias="STALE_UPLOAD_SECONDS")
    migration_worker_enabled: bool = Field(default=True, alias="MIGRATION_WORKER_ENABLED")

    # Consensus Ledger (Hedera)
    ledger_gateway_url: str = Field(default="", alias="LEDGER_GATEWAY_URL")
    ledger_gateway_token: str = Field(default="", alias="LEDGER_GATEWAY_TOKEN")
    ledger_topic_id: str = Field(default="", alias="LEDGER_TOPIC_ID")
    ledger_topic_memo: str = Field(default="SessionAuditLogs", alias="LEDGER_TOPIC_MEMO")
    mirror_node_url: str = Field(
        default="https://testnet.mirrornode.hedera.com", alias="MIRROR_NODE_URL"
    )
    ledger_timeout_seconds: float = Field(default=15.0, alias="LEDGER_TIMEOUT_SECONDS")
    verify_max_attempts: int = Field(default=6, ge=1, alias="VERIFY_MAX_ATTEMPTS")
    verify_interval_ms: int = Field(default=5000, alias="VERIFY_INTERVAL_MS")
    verify_message_limit: int = Field(default=50, alias="VERIFY_MESSAGE_LIMIT")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def fallback_gateways_list(self) -> list[str]:
        """Parse fallback IPFS gateways from comma-separated string."""
        return [g.strip() for g in self.pinata_fallback_gateways.split(",") if g.strip()]

    @property
    def min_balance_base_units(self) -> int:
        """Minimum payments balance in token base units (18 decimals)."""
        return int(self.min_balance * (10**TOKEN_DECIMALS))

    @property
    def deposit_amount_base_units(self) -> int:
        """Default top-up deposit in token base units (18 decimals)."""
        return int(self.deposit_amount * (10**TOKEN_DECIMALS))

    @property
    def rate_allowance_base_units(self) -> int:
        return int(self.rate_allowance * (10**TOKEN_DECIMALS))

    @property
    def lockup_allowance_base_units(self) -> int:
        return int(self.lockup_allowance * (10**TOKEN_DECIMALS))

    @model_validator(mode="after")
    def validate_migration_timing(self) -> "Settings":
        """A live migration must never look stale to reclaim_stale()."""
        if self.stale_upload_seconds <= self.migration_timeout_seconds:
            raise ValueError(
                f"STALE_UPLOAD_SECONDS ({self.stale_upload_seconds}) must be greater than "
                f"MIGRATION_TIMEOUT_SECONDS ({self.migration_timeout_seconds})"
            )
        return self

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with every missing variable listed at once.
        Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.pinata_jwt:
            missing.append("PINATA_JWT: Get your JWT token from https://pinata.cloud")

        if not self.filecoin_private_key:
            missing.append("FILECOIN_PRIVATE_KEY: Operator wallet that funds storage deals")

        if not self.payments_contract_address or not self.payment_token_address:
            missing.append(
                "PAYMENTS_CONTRACT_ADDRESS / PAYMENT_TOKEN_ADDRESS: Filecoin payments contract "
                "and ERC-20 token used for storage payments"
            )

        if not self.storage_provider_url:
            missing.append("STORAGE_PROVIDER_URL: Storage provider upload endpoint")

        if not self.ledger_gateway_url:
            missing.append("LEDGER_GATEWAY_URL: Consensus gateway used to submit topic messages")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
