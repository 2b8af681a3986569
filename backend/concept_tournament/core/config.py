"""
Application configuration
"""

from typing import Dict, List, Optional
from pydantic_settings import BaseSettings


DEFAULT_REVIEWER_PANEL: Dict[str, List[str]] = {
    "CLIN": ["clinical_impact", "scientific_validity"],
    "STAT": ["scientific_validity"],
    "SAF": ["clinical_impact"],
    "REG": ["feasibility", "scientific_validity"],
    "HEOR": ["commercial_value"],
    "OPS": ["feasibility"],
    "PADV": ["clinical_impact", "feasibility"],
    "ETH": ["scientific_validity"],
    "COMM": ["commercial_value"],
    "SUC": ["feasibility", "commercial_value"],
}


class Settings(BaseSettings):
    """Application settings"""

    # Service
    APP_NAME: str = "Study Concept Tournament"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8001
    API_PREFIX: str = ""
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./concept_tournament.db"

    # LLM provider (OpenAI-compatible chat completions)
    LLM_ENABLED: bool = False
    LLM_API_TYPE: str = "OPENAI"  # OPENAI, OPENWEBUI
    LLM_BASE_URL: str = "https://api.openai.com"
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gpt-4.1"
    LLM_TIMEOUT: int = 90
    LLM_VERIFY_SSL: bool = True
    LLM_MAX_TOKENS: int = 4000
    GENERATOR_TEMPERATURE: float = 1.0
    REVIEWER_TEMPERATURE: float = 0.3

    # Tournament defaults
    DEFAULT_LANE_COUNT: int = 5
    DEFAULT_MAX_ROUNDS: int = 3
    SCORE_SCALE_MAX: float = 5.0
    NEUTRAL_SCORE: float = 2.5
    PROMOTION_EPSILON: float = 0.05
    EARLY_STOP_ENABLED: bool = False
    CHALLENGERS_PER_LANE: int = 1
    REVIEWER_PANEL: Dict[str, List[str]] = DEFAULT_REVIEWER_PANEL

    # Provider call policy
    PROVIDER_MAX_RETRIES: int = 3
    PROVIDER_BACKOFF_SECONDS: float = 1.0
    PROVIDER_CALL_TIMEOUT: float = 120.0
    MAX_CONCURRENT_CALLS: int = 8

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
