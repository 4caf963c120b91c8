"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no API keys in code)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

ChecksumAlgorithm = Literal["sha256", "sha384", "sha512"]


class ValidationConfig(BaseModel):
    """Thresholds used by the record, SOP and compliance validators."""

    max_timestamp_age_days: int = Field(
        default=365, gt=0, description="Timestamps older than this raise a stale warning"
    )
    min_description_length: int = Field(
        default=10, gt=0, description="Descriptions shorter than this block submission"
    )
    recommended_description_length: int = Field(
        default=50, gt=0, description="Descriptions shorter than this raise a warning"
    )
    min_distinct_characters: int = Field(
        default=3, gt=0, description="Placeholder-text guard on descriptions"
    )
    min_location_length: int = Field(default=3, gt=0, description="Minimum useful location text")

    @model_validator(mode="after")
    def recommended_not_below_minimum(self) -> "ValidationConfig":
        if self.recommended_description_length < self.min_description_length:
            raise ValueError(
                "recommended_description_length must be >= min_description_length"
            )
        return self


class IncidentConfig(BaseModel):
    """Incident drafting and finalization settings."""

    checksum_algorithm: ChecksumAlgorithm = Field(
        default="sha256", description="Hash used to seal finalized packets"
    )
    packet_version: str = Field(default="1.0", description="Finalized packet format version")
    default_location: str = Field(
        default="Client Location", description="Location applied by auto-fix when missing"
    )
    transcript_excerpt_length: int = Field(
        default=300, gt=0, description="Transcript characters quoted in a draft description"
    )


class AIProviderConfig(BaseModel):
    """AI provider configuration with secure defaults."""

    openai_api_key: str | None = Field(None, description="OpenAI API key (optional)")
    risk_analysis_model: str = Field(
        default="openai:gpt-4o-mini", description="Model used for tag risk analysis"
    )
    timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Timeout for a single risk analysis call"
    )
    enable_ai_analysis: bool = Field(
        default=False, description="Use the AI risk analyzer instead of the rule-based one"
    )

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: str | None) -> str | None:
        if not v:
            return None
        if not v.startswith("sk-"):
            raise ValueError("AI provider API key must start with 'sk-'")
        return v

    @model_validator(mode="after")
    def ai_requires_key(self) -> "AIProviderConfig":
        if self.enable_ai_analysis and not self.openai_api_key:
            raise ValueError("enable_ai_analysis requires an OpenAI API key")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    incidents: IncidentConfig = Field(default_factory=IncidentConfig)
    ai_provider: AIProviderConfig = Field(default_factory=AIProviderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
    v = val.strip().lower()
    if v in {"dev", "development"}:
        return "development"
    if v in {"stage", "staging"}:
        return "staging"
    return "production"


def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
    v = val.strip().upper()
    return cast(
        Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
    )


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    validation_config = ValidationConfig(
        max_timestamp_age_days=int(os.getenv("MAX_TIMESTAMP_AGE_DAYS", "365")),
        min_description_length=int(os.getenv("MIN_DESCRIPTION_LENGTH", "10")),
        recommended_description_length=int(os.getenv("RECOMMENDED_DESCRIPTION_LENGTH", "50")),
    )

    incident_config = IncidentConfig(
        checksum_algorithm=cast(ChecksumAlgorithm, os.getenv("CHECKSUM_ALGORITHM", "sha256")),
        default_location=os.getenv("DEFAULT_LOCATION", "Client Location"),
    )

    ai_config = AIProviderConfig(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        risk_analysis_model=os.getenv("RISK_ANALYSIS_MODEL", "openai:gpt-4o-mini"),
        timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", "30.0")),
        enable_ai_analysis=_parse_bool(os.getenv("ENABLE_AI_ANALYSIS"), False),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        validation=validation_config,
        incidents=incident_config,
        ai_provider=ai_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nVALIDATION")
    print(f"Max timestamp age: {config.validation.max_timestamp_age_days} days")
    print(
        f"Description length: min {config.validation.min_description_length}, "
        f"recommended {config.validation.recommended_description_length}"
    )

    print("\nINCIDENTS")
    print(
        f"Checksum: {config.incidents.checksum_algorithm} "
        f"(packet v{config.incidents.packet_version})"
    )

    print("\nAI")
    print(f"AI analysis enabled: {config.ai_provider.enable_ai_analysis}")
    print(f"Risk model: {config.ai_provider.risk_analysis_model}")


if __name__ == "__main__":
    print_config_summary()
