# tenant_guard/core/config.py
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration du moteur d'isolation tenant avec validation Pydantic"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =====================================
    # APPLICATION
    # =====================================
    APP_NAME: str = "Tenant Guard"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # =====================================
    # STOCKAGE
    # =====================================
    DATABASE_URL: str = "sqlite:///./tenant_guard.db"
    SQLALCHEMY_ECHO: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"
    # database, redis ou memory
    COUNTER_BACKEND: str = "database"

    # =====================================
    # ESCALADE (moteur de décision d'accès)
    # =====================================
    ESCALATION_THRESHOLD: int = 5
    ESCALATION_WINDOW_MINUTES: int = 15
    CRITICAL_ESCALATION_THRESHOLD: int = 10
    AUTO_BLOCK_ON_CRITICAL: bool = True
    AUTO_BLOCK_DURATION_MINUTES: int = 30

    # =====================================
    # BLOCAGES TEMPORAIRES
    # =====================================
    DEFAULT_BLOCK_DURATION_MINUTES: int = 30

    # =====================================
    # ANALYSE DES COMPORTEMENTS
    # =====================================
    SUSPICIOUS_MIN_EVENTS: int = 10
    SUSPICIOUS_RISK_THRESHOLD: int = 50
    CROSS_TENANT_PATTERN_THRESHOLD: int = 15
    CROSS_TENANT_CRITICAL_THRESHOLD: int = 50
    RAPID_ACCESS_BURST: int = 10
    RAPID_ACCESS_WINDOW_SECONDS: int = 60
    RECOMMENDATION_RISK_THRESHOLD: int = 20
    TOP_RISKY_USERS_LIMIT: int = 5

    # =====================================
    # LIMITATION DE DÉBIT
    # =====================================
    RATE_LIMIT_RETENTION_HOURS: int = 24
    RATE_LIMITED_PATHS: List[str] = ["/security/access-check", "/enrollments"]
    RATE_LIMIT_IP_ACTION: str = "enrollment_request"

    # =====================================
    # LOGGING
    # =====================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# Instance globale des paramètres
settings = Settings()
