"""Configuration management for the Fusion Rebalancer."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

SERVER_REQUIRED = ("private_key", "node_url", "dev_portal_api_token")
BATCH_REQUIRED = ("node_url", "dev_portal_api_token")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Secrets & endpoints ────────────────────────────────────────────────────
    private_key: str = Field(default="", description="Server wallet private key")
    node_url: str = Field(default="", description="Chain RPC endpoint URL")
    dev_portal_api_token: str = Field(default="", description="1inch Dev Portal API token")

    # ── API Server ─────────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=3000, description="API server port")
    cors_origins: list[str] = Field(default=["*"], description="CORS allowed origins")

    # ── Rebalancing ────────────────────────────────────────────────────────────
    rebalancing_interval: int = Field(
        default=60_000,
        description="Strategy sweep interval (ms)",
    )
    offset: float = Field(
        default=0.01,
        description="Tolerance band around the 50/50 target (0.01 = 1%)",
    )

    # ── Chain & tokens ─────────────────────────────────────────────────────────
    chain_id: int = Field(default=8453, description="Chain ID (Base)")
    oneinch_base_url: str = Field(default="https://api.1inch.com", description="1inch API root")
    http_timeout_seconds: float = Field(default=30.0, description="Outbound HTTP timeout")

    weth_address: str = Field(
        default="0x4200000000000000000000000000000000000006",
        description="WETH token address",
    )
    weth_decimals: int = Field(default=18, description="WETH decimals")
    usdc_address: str = Field(
        default="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        description="USDC token address",
    )
    usdc_decimals: int = Field(default=6, description="USDC decimals")

    # ── Timing ─────────────────────────────────────────────────────────────────
    approval_confirmation_delay_seconds: float = Field(
        default=10.0,
        description="Wait after broadcasting an approval before swapping",
    )
    order_poll_interval_seconds: float = Field(
        default=30.0,
        description="Fusion order status poll interval",
    )
    order_poll_timeout_seconds: float = Field(
        default=1800.0,
        description="Give up polling after this long (0 = poll forever)",
    )
    trigger_cooldown_seconds: float = Field(
        default=120.0,
        description="Minimum time between triggers for one user",
    )
    deal_timeout_seconds: float = Field(
        default=600.0,
        description="Force-release an in-flight deal after this long",
    )

    # ── iExec ──────────────────────────────────────────────────────────────────
    iexec_app_address: str = Field(default="", description="iExec app address")
    iexec_workerpool_address: str = Field(default="", description="iExec workerpool address")
    iexec_rpc_url: str = Field(default="https://bellecour.iex.ec", description="iExec chain RPC")
    iexec_chain_id: int = Field(default=134, description="iExec chain ID (Bellecour)")
    iexec_hub_address: str = Field(
        default="0x3eca1B216A7DF1C7689aEb259fFB83ADFB894E7f",
        description="iExec PoCo hub contract",
    )
    iexec_category: int = Field(default=0, description="iExec task category")
    iexec_result_proxy: str = Field(
        default="https://result-proxy.bellecour.iex.ec",
        description="iExec result storage proxy",
    )
    iexec_out: str = Field(default="", description="Batch mode output directory")
    iexec_in: str = Field(default="", description="Batch mode input directory")
    iexec_dataset_filename: str = Field(default="", description="Protected data file name")

    def missing_required(self, names: tuple[str, ...] = SERVER_REQUIRED) -> list[str]:
        """Names of required settings that are empty or whitespace."""
        return [name for name in names if not str(getattr(self, name)).strip()]

    def require(self, names: tuple[str, ...] = SERVER_REQUIRED) -> None:
        missing = self.missing_required(names)
        if missing:
            env_names = ", ".join(name.upper() for name in missing)
            raise ConfigurationError(
                f"Missing required environment variables (empty or undefined): {env_names}"
            )


settings = Settings()
