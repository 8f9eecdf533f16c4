from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    env: str = "development"
    redis_url: str = "redis://localhost:6379/0"

    # --- Blockchain (read-only verification) ---
    blockchain_network: str = "base_sepolia"  # "base_sepolia" or "base_mainnet"
    blockchain_rpc_url: str = ""  # Auto-set from network if empty
    verifier_contract_address: str = "0x1258F013d1BA690Dc73EA89Fd48F86E86AD0f124"
    verification_timeout_seconds: int = 10

    @property
    def resolved_rpc_url(self) -> str:
        if self.blockchain_rpc_url:
            return self.blockchain_rpc_url
        return {
            "base_sepolia": "https://sepolia.base.org",
            "base_mainnet": "https://mainnet.base.org",
        }[self.blockchain_network]

    # --- Generation provider ---
    genapi_base_url: str = "https://demo-api.whitewall.network/v1"
    genapi_api_key: str = ""
    genapi_poll_interval_seconds: float = 3.0
    genapi_timeout_seconds: float = 180.0
    genapi_request_timeout_seconds: float = 30.0

    # --- Blob storage ---
    blob_api_url: str = "https://blob.vercel-storage.com"
    blob_read_write_token: str = ""

    # --- Rate limiting (fixed window, per owner address) ---
    rate_limit_image_limit: int = 3
    rate_limit_image_window_seconds: int = 60
    rate_limit_video_limit: int = 2  # Video is far more expensive
    rate_limit_video_window_seconds: int = 120

    # --- Simulation / streaming ---
    simulation_time_scale: float = 1.0  # Multiplies every scripted delay; 0 in tests
    presentation_multiplier: float = 1.8
    sse_keepalive_seconds: float = 15.0
    feed_poll_seconds: float = 2.0

    # --- Requests / feed ---
    prompt_max_length: int = 500
    feed_page_default: int = 20
    feed_page_max: int = 50

    # CORS
    cors_allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
