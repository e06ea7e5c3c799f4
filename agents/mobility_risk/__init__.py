"""
Mobility Risk Agent

A microservice for estimating immobility harms in hospitalized patients and
prescribing bedside cycle-ergometer exercise.

This agent provides:
- Four calibrated log-odds models (deconditioning, VTE, falls, pressure injury)
- Odds ratios against a fully mobile reference patient
- Anthropometric cycling prescription calibrated to the ward ergometer
- REST API for single and batch assessments

Components:
-----------
- config: Environment-based configuration and categorical vocabularies
- calibration: Read-only weights, intercepts and risk bands
- text_parser: Admission diagnosis categories and medication buckets
- features: Input normalization and feature flags
- model: Outcome scorers and the RiskCalculator orchestrator
- prescription: Watt goal, duration and sessions per day
- api: FastAPI application

Usage:
------
    # As API server
    python -m uvicorn mobility_risk.api:app --host 0.0.0.0 --port 8005

    # As a library
    from mobility_risk import calculate_risks
    result = calculate_risks({"age": 78, "sex": "female",
                              "level_of_care": "ward",
                              "mobility_status": "chair_bound"})

Author: Hospital AI Platform Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Hospital AI Platform Team"

from .calibration import DEFAULT_CALIBRATION, CalibrationTable, Outcome, RiskLevel
from .config import settings
from .features import (
    FeatureFlags,
    InvalidAssessmentInput,
    RiskAssessmentInput,
    extract_features,
    normalize_input,
)
from .model import (
    OutcomeResult,
    RiskAssessment,
    RiskCalculator,
    calculate_risks,
    compute_outcome,
    results_to_frame,
    score_outcome,
)
from .prescription import (
    MobilityRecommendation,
    estimate_watt_goal,
    estimate_watt_goal_legacy,
)

__all__ = [
    "settings",
    "DEFAULT_CALIBRATION",
    "CalibrationTable",
    "Outcome",
    "RiskLevel",
    "FeatureFlags",
    "InvalidAssessmentInput",
    "RiskAssessmentInput",
    "extract_features",
    "normalize_input",
    "OutcomeResult",
    "RiskAssessment",
    "RiskCalculator",
    "calculate_risks",
    "compute_outcome",
    "results_to_frame",
    "score_outcome",
    "MobilityRecommendation",
    "estimate_watt_goal",
    "estimate_watt_goal_legacy",
    "__version__",
]
