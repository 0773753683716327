from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    delivery_api_base_url: str = "http://localhost:3333/v2"
    routes_api_base_url: str = "https://routes.googleapis.com"
    google_maps_api_key: str = ""
    request_timeout_seconds: float = 30.0
    language_code: str = "pt-BR"
    commit_mode: str = "explicit"  # "explicit" or "immediate"
    display_simplify_tolerance: float = 0.00005  # degrees
    persist_simplify_tolerance: float = 0.0  # 0 disables
    cors_allow_origins: list[str] = ["*"]

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
