"""
Configuration management for the mastery engine.
Loads from config/engine.yaml and environment variables.
"""

from pathlib import Path
from typing import Optional, Dict, Any, List
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class MasteryConfig(BaseSettings):
    """Mastery score update rules."""
    prior: float = Field(default=0.5)
    floor: float = Field(default=0.10)
    ceiling: float = Field(default=0.99)
    correct_delta: float = Field(default=0.10)
    diagnostic_miss_delta: float = Field(default=0.10)
    practice_miss_delta: float = Field(default=0.05)
    latent_knowledge_delta: float = Field(default=0.08)
    slow_repair_delta: float = Field(default=0.03)
    latent_velocity_threshold: float = Field(default=0.5)
    precision: int = Field(default=4)

    model_config = SettingsConfigDict(env_prefix="MASTERY_", extra="ignore")


class TimingConfig(BaseSettings):
    """Speed rating boundaries."""
    diagnostic_sprint_ms: int = Field(default=3000)
    diagnostic_steady_ms: int = Field(default=15000)
    practice_seconds_per_difficulty: int = Field(default=8)
    practice_sprint_ratio: float = Field(default=0.6)
    default_difficulty: int = Field(default=3)

    model_config = SettingsConfigDict(env_prefix="TIMING_", extra="ignore")


class SessionConfig(BaseSettings):
    """Session controller configuration."""
    confidence_threshold: float = Field(default=0.85)
    hurdle_clear_streak: int = Field(default=3)
    flow_points: Dict[str, int] = Field(
        default_factory=lambda: {"correct": 15, "recovered": 7, "miss": 0}
    )
    checkpoint_every_answer: bool = Field(default=True)

    model_config = SettingsConfigDict(env_prefix="SESSION_", extra="ignore")


class MissionConfig(BaseSettings):
    """Mission selection quotas and thresholds."""
    warm_up_quota: int = Field(default=3)
    hurdle_killer_quota: int = Field(default=4)
    frontier_quota: int = Field(default=3)
    warm_up_floor: float = Field(default=0.70)
    frontier_ceiling: float = Field(default=0.40)
    target: int = Field(default=10)
    extended_target: int = Field(default=14)

    model_config = SettingsConfigDict(env_prefix="MISSION_", extra="ignore")


class ValidationConfig(BaseSettings):
    """Telemetry validation thresholds."""
    time_spent_max_ms: int = Field(default=300000)
    answer_min_length: int = Field(default=1)
    answer_max_length: int = Field(default=500)
    diagnostic_tags: List[str] = Field(default_factory=lambda: [
        "SIGN_IGNORANCE",
        "UNIT_CONFUSION",
        "OPERATOR_SWAP",
        "NOTATION_ERROR",
        "CALCULATION_ERROR",
        "CONCEPTUAL_GAP",
    ])

    # Semantic tier
    guess_mastery_ceiling: float = Field(default=0.3)
    hidden_misconception_floor: float = Field(default=0.8)
    resistant_velocity_ceiling: float = Field(default=0.2)
    confidence_paradox_drop: float = Field(default=0.1)
    automation_floor_ms: int = Field(default=200)
    abandonment_ms: int = Field(default=180000)
    max_clock_skew_ms: int = Field(default=300000)

    # Insight tier
    insight_window: int = Field(default=10)
    breakthrough_success_rate: float = Field(default=0.3)
    regression_success_rate: float = Field(default=0.7)
    speed_change_ratio: float = Field(default=0.5)
    failure_streak: int = Field(default=4)
    success_streak: int = Field(default=5)
    guessing_time_ratio: float = Field(default=0.5)

    model_config = SettingsConfigDict(env_prefix="VALIDATION_", extra="ignore")


class PersistenceConfig(BaseSettings):
    """Document store and background audit configuration."""
    db_path: Path = Field(default=Path("data/engine.sqlite"))
    write_timeout_seconds: float = Field(default=10.0)
    circuit_breaker_failure_threshold: int = Field(default=3)
    circuit_breaker_reset_seconds: int = Field(default=60)
    audit_batch_size: int = Field(default=100)
    history_limit: int = Field(default=50)

    model_config = SettingsConfigDict(env_prefix="PERSISTENCE_", extra="ignore")


class EngineSettings(BaseSettings):
    """Main engine configuration."""
    env: str = Field(default="dev", alias="ENGINE_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    # Sub-configurations
    mastery: MasteryConfig = Field(default_factory=MasteryConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    mission: MissionConfig = Field(default_factory=MissionConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="allow"
    )

    @classmethod
    def load_from_yaml(cls, config_path: Optional[Path] = None) -> "EngineSettings":
        """Load settings from YAML file and merge with environment variables."""
        if config_path is None:
            config_path = Path("config/engine.yaml")

        config_dict: Dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
                config_dict = yaml_data.get("engine", {})

        # Flatten session.flow_points given as a list of {outcome: points}
        if "session" in config_dict and isinstance(config_dict["session"], dict):
            session_cfg = dict(config_dict["session"])
            flow = session_cfg.get("flow_points")
            if isinstance(flow, list):
                merged: Dict[str, int] = {}
                for entry in flow:
                    merged.update(entry)
                session_cfg["flow_points"] = merged
            config_dict["session"] = session_cfg

        return cls(**config_dict)


# Global settings instance
_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.load_from_yaml()
    return _settings


# Alias for convenience
settings = get_settings()
