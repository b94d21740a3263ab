from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    supabase_url: str
    supabase_service_role_key: str
    retell_webhook_secret: str | None = None
    vapi_webhook_secret: str | None = None
    internal_api_token: str | None = None
    retell_api_key: str | None = None
    vapi_api_key: str | None = None
    retell_api_base: str = "https://api.retellai.com"
    vapi_api_base: str = "https://api.vapi.ai"
    provider_request_timeout_seconds: float = 15.0
    stripe_secret_key: str | None = None
    lead_phone_match_mode: str = "exact"  # exact | normalized
    log_level: str = "INFO"
    observability_export_url: str | None = None
    observability_export_bearer_token: str | None = None
    observability_export_timeout_seconds: float = 3.0

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
