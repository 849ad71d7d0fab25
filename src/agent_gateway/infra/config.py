from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "agent-gateway"
    environment: str = "local"
    log_level: str = "INFO"

    genai_api_key: str | None = None
    model_fast: str = "gemini-2.5-flash"
    model_deep: str = "gemini-2.5-pro"
    model_grounded: str = "gemini-2.5-flash"
    provider_max_attempts: int = 3
    provider_base_delay_seconds: float = 1.0

    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"

    webhook_secret: str = ""
    webhook_signature_header: str = "bani-hook-signature"
    webhook_accepted_event_prefixes: list[str] = ["payin_"]
    purchase_reference_prefix: str = "METI"
    # JSON object: {"pro": {"kind": "subscription", "prices": {"NGN": "44700"}}, ...}
    price_table_json: str | None = None

    storage_backend: str = "in_memory"
    opensearch_url: str = "http://localhost:9200"
    opensearch_index_prefix: str = ""
    opensearch_verify_certs: bool = False

    allowed_origins: list[str] = ["*"]

    model_config = SettingsConfigDict(env_prefix="GATEWAY_", env_file=".env", extra="ignore")
