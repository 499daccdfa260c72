from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    PROJECT_NAME: str = "MT5 Bridge API"
    VERSION: str = "0.1.0"
    API_ROOT_PATH: str = ""

    HOST: str = "0.0.0.0"
    PORT: int = 3001

    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    LOG_LEVEL: str = "INFO"

    # MetaApi credentials (required at startup)
    META_API_TOKEN: Optional[str] = None

    METAAPI_PROVISIONING_URL: str = "https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai"
    METAAPI_CLIENT_URL_TEMPLATE: str = "https://mt-client-api-v1.{region}.agiliumtrade.ai"
    METAAPI_DEFAULT_REGION: str = "new-york"
    METAAPI_REQUEST_TIMEOUT_SECONDS: float = 60.0

    # Provisioning profile for newly created accounts
    ACCOUNT_TYPE: str = "cloud"
    ACCOUNT_PLATFORM: str = "mt5"

    # Readiness policy
    COLD_CONNECT_TIMEOUT_SECONDS: float = 60.0
    WARM_CONNECT_TIMEOUT_SECONDS: float = 30.0
    POLL_INTERVAL_SECONDS: float = 1.0

    # Trade history defaults
    HISTORY_LOOKBACK_DAYS: int = 30
    HISTORY_LIMIT: int = 1000

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
