"""Application configuration using Pydantic Settings."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./fgpredict.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # API Security
    API_KEY: str = ""  # Required in production for batch/write endpoints
    API_KEY_HEADER: str = "X-API-Key"
    RATE_LIMIT_PER_MINUTE: str = "60/minute"

    # Match History Aggregator
    TEAM_WINDOW_SIZE: int = 10
    FORM_DECAY: float = 0.8  # weight = decay ** age, age 0 = most recent
    MIN_TEAM_MATCHES: int = 3

    # Pattern Table Builder
    PATTERN_FEATURE: str = "odds_shape"
    PATTERN_BATCH_SIZE: int = 2000
    MIN_PATTERN_SAMPLE: int = 10
    PATTERN_SETTLE_LAG_SECONDS: float = 120.0  # keep above the ingest job timeout

    # Predictor
    DEVIG_METHOD: str = "proportional"  # "proportional" | "power" | "shin"
    FORM_LOGISTIC_SCALE: float = 4.0
    FORM_HOME_ADVANTAGE: float = 0.10
    FORM_DRAW_BASE: float = 0.28
    WEIGHT_PATTERN: float = 1.0
    WEIGHT_FORM: float = 1.0
    WEIGHT_ODDS: float = 1.0
    WEIGHT_SCENARIO: float = 1.0
    WEIGHT_SATURATION: int = 50
    SCENARIO_HOME_FIRST_SHARE: float = 0.55  # prior that the home side scores first
    SCENARIO_DRAW_MIN: float = 0.05
    SCENARIO_DRAW_MAX: float = 0.40
    AGREEMENT_TOLERANCE: float = 0.10
    HIGH_GRADE_MIN_SAMPLE: int = 30
    MEDIUM_GRADE_MIN_SAMPLE: int = 10
    MIN_EDGE: float = 0.08

    # Batch jobs
    PREDICTION_BATCH_SIZE: int = 200
    SETTLEMENT_BATCH_SIZE: int = 200
    PREDICTION_HORIZON_DAYS: int = 7
    JOB_TIMEOUT_SECONDS: float = 55.0  # 0 disables; rolls back and leaves watermarks unmoved

    # Observability
    SENTRY_DSN: str = ""
    ENVIRONMENT: str = "development"  # "production" makes API_KEY mandatory
    SENTRY_TRACES_SAMPLE_RATE: float = 0.05
    METRICS_BEARER_TOKEN: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass(frozen=True)
class PipelineConfig:
    """
    Tunables for the aggregation and prediction pipeline.

    Passed explicitly into every aggregator, pattern builder and predictor
    call. Build one from settings with `PipelineConfig.from_settings()` or
    construct it directly in tests.
    """

    window_size: int = 10
    form_decay: float = 0.8
    min_team_matches: int = 3

    pattern_feature: str = "odds_shape"
    min_pattern_sample: int = 10
    settle_lag_seconds: float = 120.0

    devig_method: str = "proportional"
    form_logistic_scale: float = 4.0
    form_home_advantage: float = 0.10
    form_draw_base: float = 0.28

    weight_pattern: float = 1.0
    weight_form: float = 1.0
    weight_odds: float = 1.0
    weight_scenario: float = 1.0
    weight_saturation: int = 50

    scenario_home_first_share: float = 0.55
    scenario_draw_min: float = 0.05
    scenario_draw_max: float = 0.40

    agreement_tolerance: float = 0.10
    high_grade_min_sample: int = 30
    medium_grade_min_sample: int = 10
    min_edge: float = 0.08

    def __post_init__(self):
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        if not 0.0 < self.form_decay <= 1.0:
            raise ValueError(f"form_decay must be in (0, 1], got {self.form_decay}")
        if not 0.0 <= self.form_draw_base < 0.5:
            # Keeps the form mapping monotonic in the form differential
            raise ValueError(f"form_draw_base must be in [0, 0.5), got {self.form_draw_base}")
        if self.weight_saturation < 1:
            raise ValueError(f"weight_saturation must be >= 1, got {self.weight_saturation}")
        if self.settle_lag_seconds < 0:
            raise ValueError(f"settle_lag_seconds must be >= 0, got {self.settle_lag_seconds}")
        if not 0.0 < self.scenario_home_first_share < 1.0:
            raise ValueError(
                f"scenario_home_first_share must be in (0, 1), got {self.scenario_home_first_share}"
            )
        if not 0.0 <= self.scenario_draw_min <= self.scenario_draw_max < 1.0:
            raise ValueError(
                f"scenario draw bounds must satisfy 0 <= min <= max < 1, "
                f"got [{self.scenario_draw_min}, {self.scenario_draw_max}]"
            )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PipelineConfig":
        s = settings or get_settings()
        return cls(
            window_size=s.TEAM_WINDOW_SIZE,
            form_decay=s.FORM_DECAY,
            min_team_matches=s.MIN_TEAM_MATCHES,
            pattern_feature=s.PATTERN_FEATURE,
            min_pattern_sample=s.MIN_PATTERN_SAMPLE,
            settle_lag_seconds=s.PATTERN_SETTLE_LAG_SECONDS,
            devig_method=s.DEVIG_METHOD,
            form_logistic_scale=s.FORM_LOGISTIC_SCALE,
            form_home_advantage=s.FORM_HOME_ADVANTAGE,
            form_draw_base=s.FORM_DRAW_BASE,
            weight_pattern=s.WEIGHT_PATTERN,
            weight_form=s.WEIGHT_FORM,
            weight_odds=s.WEIGHT_ODDS,
            weight_scenario=s.WEIGHT_SCENARIO,
            weight_saturation=s.WEIGHT_SATURATION,
            scenario_home_first_share=s.SCENARIO_HOME_FIRST_SHARE,
            scenario_draw_min=s.SCENARIO_DRAW_MIN,
            scenario_draw_max=s.SCENARIO_DRAW_MAX,
            agreement_tolerance=s.AGREEMENT_TOLERANCE,
            high_grade_min_sample=s.HIGH_GRADE_MIN_SAMPLE,
            medium_grade_min_sample=s.MEDIUM_GRADE_MIN_SAMPLE,
            min_edge=s.MIN_EDGE,
        )
