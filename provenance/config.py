import logging
import warnings

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    environment: str = "development"  # development | test | production

    # Durable snapshot of the registry (JSON, written temp-then-rename)
    store_path: str = "./data/provenance.json"

    # Chain explorer (read-only oracle)
    chain_api_base: str = "https://api.explorer.provable.com/v1/testnet"
    program_id: str = "onyxpriv_v5.aleo"
    oracle_timeout_seconds: float = 8.0

    # Confirmation policy
    require_payment_confirmation: bool = True
    provisional_sale_prefix: str = "pending_"
    chain_tx_id_pattern: str = r"^at1[a-z0-9]{58}$"

    # Marketplace browse
    browse_default_page_size: int = 20
    browse_max_page_size: int = 50
    unknown_brand_name: str = "Unknown Brand"

    # Event log
    event_log_default_limit: int = 100

    # Sessions
    jwt_secret_key: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 7 days
    nonce_signature_min_length: int = 64

    # Logging
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()

_logger = logging.getLogger("provenance.config")
_INSECURE_SECRETS = {
    "dev-secret-change-in-production",
    "change-me-to-a-random-string",
    "secret",
}


def validate_security_posture(cfg: Settings) -> None:
    is_prod = cfg.environment.lower() in {"production", "prod"}

    if cfg.jwt_secret_key in _INSECURE_SECRETS:
        if is_prod:
            raise RuntimeError(
                "FATAL: JWT_SECRET_KEY is set to an insecure default. "
                "Set a strong random secret via the JWT_SECRET_KEY environment variable before deploying to production."
            )
        warnings.warn(
            "JWT_SECRET_KEY is set to the default insecure value. "
            "Set a strong random secret via the JWT_SECRET_KEY environment variable for production.",
            stacklevel=1,
        )

    if not cfg.require_payment_confirmation:
        if is_prod:
            raise RuntimeError(
                "FATAL: REQUIRE_PAYMENT_CONFIRMATION cannot be disabled in production."
            )
        _logger.warning(
            "REQUIRE_PAYMENT_CONFIRMATION is off; sale payments are recorded without chain confirmation."
        )

    if cfg.oracle_timeout_seconds <= 0:
        raise RuntimeError("ORACLE_TIMEOUT_SECONDS must be positive.")

    if cfg.browse_max_page_size < 1 or cfg.browse_default_page_size < 1:
        raise RuntimeError("Browse page sizes must be at least 1.")


validate_security_posture(settings)
