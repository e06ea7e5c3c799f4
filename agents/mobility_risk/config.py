"""
Mobility Risk Agent - Configuration Module

This module centralizes environment-based configuration for the bedside
mobility risk microservice, plus the categorical vocabularies every patient
snapshot is normalized against.

================================================================================
AGENT PURPOSE & CLINICAL CONTEXT
================================================================================

Hospitalized patients lose function quickly when they stay in bed:

1. IMMOBILITY HARMS:
   - Deconditioning (functional decline) appears within days of bed rest
   - Venous thromboembolism, falls and pressure injuries all rise with
     reduced mobility
   - Clinicians need a quick, explainable estimate of each harm

2. MOBILITY DOSE:
   - A bedside cycle ergometer lets bedbound and chair-bound patients move
   - The agent prescribes a safe target power, session length and frequency
     calibrated to the physical device on the ward

3. CLINICAL WORKFLOW INTEGRATION:
   - Results are decision SUPPORT for nurses and therapists
   - The calibration table is fixed; only service plumbing is configurable

================================================================================
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# CATEGORICAL VOCABULARIES
# =============================================================================
# Order matters for MOBILITY_LEVELS: most to least impaired.

MOBILITY_LEVELS = (
    "bedbound",
    "chair_bound",
    "standing_assist",
    "walking_assist",
    "independent",
)

COGNITION_LEVELS = ("normal", "mild_impairment", "delirium_dementia")

LEVELS_OF_CARE = ("icu", "stepdown", "ward", "rehab")

BASELINE_FUNCTIONS = ("independent", "walker", "dependent")

SEXES = ("male", "female", "other")

LEVEL_OF_CARE_ALIASES = {"step_down": "stepdown"}

SEX_ALIASES = {"m": "male", "f": "female"}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Clinical calibration constants deliberately do not live here; see
    calibration.py.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # SERVICE IDENTIFICATION
    # ==========================================================================
    service_name: str = Field(
        default="mobility-risk-agent",
        description="Unique identifier for this microservice"
    )
    service_version: str = Field(
        default="1.0.0",
        description="Semantic version of this agent"
    )
    environment: str = Field(
        default="development",
        description="Runtime environment (development, staging, production)"
    )

    # ==========================================================================
    # ASSESSMENT BEHAVIOUR
    # ==========================================================================
    stay_predictions_enabled: bool = Field(
        default=True,
        description="Whether to forward results to the stay-prediction extension"
    )
    stay_predictor_path: Optional[str] = Field(
        default=None,
        description="Dotted import path of the stay-prediction callable "
                    "(e.g. 'los_agent.client.predict_stay')"
    )
    max_batch_size: int = Field(
        default=500,
        ge=1,
        le=5000,
        description="Maximum number of patients accepted by /assess/batch"
    )

    # ==========================================================================
    # API CONFIGURATION
    # ==========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8005,
        description="API server port"
    )
    api_workers: int = Field(
        default=1,
        description="Number of Uvicorn workers"
    )
    cors_origins: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # ==========================================================================
    # LOGGING CONFIGURATION
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached Settings instance.

    Environment variables are parsed once per process.
    """
    return Settings()


settings = get_settings()
