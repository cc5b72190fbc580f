"""
Application configuration management
"""
import json
from typing import Any, List
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Ensure repository .env values win over stale exported shell variables.
load_dotenv(override=True)

class Settings(BaseSettings):
    """Application settings"""
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Database
    DATABASE_URL: str = "postgresql://common:@localhost:5432/kek"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 45  # pool size + overflow = 50 open connections
    DB_POOL_RECYCLE_SECONDS: int = 300

    # Uniswap subgraph (price oracle)
    UNISWAP_GRAPH_URL: str = "https://api.thegraph.com/subgraphs/name/uniswap/uniswap-v2"
    ORACLE_TIMEOUT_SECONDS: float = 10.0
    ORACLE_MAX_CONCURRENCY: int = 8

    # Alert evaluation
    ALERT_EVAL_ENABLED: bool = True
    ALERT_EVAL_INTERVAL_SECONDS: float = 5.0
    ALERT_EVAL_BATCH_SIZE: int = 50
    ALERT_EVAL_MAX_CONCURRENCY: int = 8
    ALERT_EVAL_PASS_TIMEOUT_SECONDS: float = 30.0
    ALERT_NOTIFY_ONCE: bool = True

    # Push notifications (Firebase Cloud Messaging)
    FCM_ENABLED: bool = False
    FCM_URL: str = "https://fcm.googleapis.com/fcm/send"
    FCM_SERVER_KEY: str = ""
    FCM_TIMEOUT_SECONDS: float = 10.0

    # Security
    CORS_ORIGINS: str = "http://localhost:9090,http://127.0.0.1:9090"

    # Server
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 9090
    SERVER_WRITE_TIMEOUT_SECONDS: float = 40.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/alert_service.log"

    @field_validator(
        'ORACLE_TIMEOUT_SECONDS',
        'ALERT_EVAL_INTERVAL_SECONDS',
        'ALERT_EVAL_PASS_TIMEOUT_SECONDS',
        'FCM_TIMEOUT_SECONDS',
        'SERVER_WRITE_TIMEOUT_SECONDS',
    )
    @classmethod
    def validate_positive_seconds(cls, v):
        if float(v) <= 0:
            raise ValueError('Must be positive')
        return float(v)

    @field_validator('ORACLE_MAX_CONCURRENCY', 'ALERT_EVAL_BATCH_SIZE', 'ALERT_EVAL_MAX_CONCURRENCY')
    @classmethod
    def validate_positive_counts(cls, v):
        if int(v) <= 0:
            raise ValueError('Must be positive')
        return int(v)

    @field_validator('DB_POOL_SIZE', 'DB_MAX_OVERFLOW', 'DB_POOL_RECYCLE_SECONDS')
    @classmethod
    def validate_pool_settings(cls, v):
        if int(v) < 0:
            raise ValueError('Pool settings cannot be negative')
        return int(v)

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        level = str(v or "").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError('LOG_LEVEL must be a standard logging level name')
        return level

    @model_validator(mode='after')
    def validate_fcm_credentials(self):
        if self.FCM_ENABLED and not self.FCM_SERVER_KEY:
            raise ValueError('FCM_ENABLED requires FCM_SERVER_KEY')
        return self

    @staticmethod
    def _parse_str_list(value: Any) -> List[str]:
        if isinstance(value, list):
            return [str(item).strip() for item in value if str(item).strip()]
        if value is None:
            return []
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return []
            if stripped.startswith('[') and stripped.endswith(']'):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in stripped.split(',') if item.strip()]
        return [str(value).strip()] if str(value).strip() else []

    def get_cors_origins(self) -> List[str]:
        origins = self._parse_str_list(self.CORS_ORIGINS)
        return origins or ["http://localhost:9090", "http://127.0.0.1:9090"]

# Global settings instance
settings = Settings()
