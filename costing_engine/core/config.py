"""
Costing Engine Configuration
Core settings for the inventory costing and landed-cost allocation service
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional
from pathlib import Path


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Info
    APP_NAME: str = "Inventory Costing Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./costing_engine.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",  # costing dashboard
        "http://localhost:3001",
    ]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path = Path("logs")
    LOG_FILE: str = "costing.log"
    ERROR_LOG_FILE: str = "error.log"
    LOG_TO_FILE: bool = True

    # Money and precision
    BASE_CURRENCY: str = "INR"
    CURRENCY_DECIMAL_PLACES: int = 2
    QUANTITY_DECIMAL_PLACES: int = 3
    RATE_DECIMAL_PLACES: int = 4
    PERCENT_DECIMAL_PLACES: int = 2

    # Risk classification
    HIGH_EXPIRY_RISK_DAYS: int = 30
    MEDIUM_EXPIRY_RISK_DAYS: int = 90
    HIGH_COST_THRESHOLD_PERCENT: float = 10.0

    # Allocation scoring (weights are normalised per strategy)
    STRATEGY_WEIGHTS: Dict[str, Dict[str, float]] = {
        "balanced": {"cost": 1.0, "expiry": 1.0, "sufficiency": 1.0},
        "cost_optimization": {"cost": 0.7, "expiry": 0.2, "sufficiency": 0.1},
        "expiry_management": {"cost": 0.2, "expiry": 0.7, "sufficiency": 0.1},
    }
    EXPIRY_SCORE_HORIZON_DAYS: int = 365
    EXCLUDE_EXPIRED_BATCHES: bool = True
    OPTIMIZER_DEFAULT_LIMIT: Optional[int] = None

    # Inventory turnover heuristics
    HIGH_TURNOVER_THRESHOLD: float = 8.0
    LOW_TURNOVER_THRESHOLD: float = 3.0
    TURNOVER_PERIOD_DAYS: int = 365

    # API Configuration
    API_V1_STR: str = "/api/v1"
    DOCS_URL: str = "/docs"
    REDOC_URL: str = "/redoc"
    OPENAPI_URL: str = "/openapi.json"

    @field_validator("MEDIUM_EXPIRY_RISK_DAYS")
    @classmethod
    def check_expiry_bands(cls, v: int, info) -> int:
        """Medium expiry band must not be narrower than the high band"""
        high = info.data.get("HIGH_EXPIRY_RISK_DAYS", 0)
        if v < high:
            raise ValueError("MEDIUM_EXPIRY_RISK_DAYS must be >= HIGH_EXPIRY_RISK_DAYS")
        return v

    @field_validator("STRATEGY_WEIGHTS")
    @classmethod
    def check_strategy_weights(cls, v: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
        """Every weighted strategy needs non-negative weights with a positive sum"""
        for strategy, weights in v.items():
            if any(w < 0 for w in weights.values()):
                raise ValueError(f"Negative scoring weight for strategy {strategy}")
            if sum(weights.values()) <= 0:
                raise ValueError(f"Scoring weights for strategy {strategy} sum to zero")
        return v

    @field_validator("LOG_DIR", mode="before")
    @classmethod
    def coerce_log_dir(cls, v):
        return Path(v) if isinstance(v, str) else v


# Global settings instance
settings = Settings()

# Database connection string for SQLAlchemy
DATABASE_URL = settings.DATABASE_URL
