"""
Mobility Risk Agent - Calibration Table

Fixed log-odds weights, intercepts and risk bands for the four immobility
harms, plus the probability helpers that turn a score into a calibrated,
banded result.

================================================================================
MODEL SHAPE
================================================================================

Every outcome is a logistic model:

    probability = logistic(intercept + mobility_weight + sum(active factor weights))

    ┌──────────────────┐   ┌────────────────────┐   ┌──────────────────────┐
    │ mobility weights │ + │ shared factors     │ + │ outcome-specific     │
    │ (5 levels)       │   │ (subset per model) │   │ modifiers (+ falls   │
    │                  │   │                    │   │ interaction)         │
    └──────────────────┘   └────────────────────┘   └──────────────────────┘

Weights are natural logs of published-style odds multipliers, so a factor
with multiplier 2.0 doubles the odds. The table is built once at import and
is never mutated; scorers receive it by reference.

================================================================================
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple, Union

from .config import COGNITION_LEVELS, MOBILITY_LEVELS


PROBABILITY_CAP = 0.95
ODDS_FLOOR = 1e-9

# Pseudo-tag marking where an outcome applies its interaction table.
INTERACTION_STEP = "interaction"


class Outcome(str, Enum):
    """The four immobility harms scored for every patient."""
    DECONDITIONING = "deconditioning"
    VTE = "vte"
    FALLS = "falls"
    PRESSURE = "pressure"

    @classmethod
    def parse(cls, value: Union["Outcome", str]) -> "Outcome":
        """Resolve an outcome key, raising ValueError for unknown keys."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown outcome '{value}'. Expected one of: "
                f"{', '.join(o.value for o in cls)}"
            ) from None


class RiskLevel(str, Enum):
    """Ordinal risk bands."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round with ties going towards positive infinity."""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def logistic(x: float) -> float:
    """Standard logistic function 1 / (1 + e^-x)."""
    return 1.0 / (1.0 + math.exp(-x))


def odds(probability: float) -> float:
    """Convert a probability to odds, flooring the denominator."""
    return probability / max(ODDS_FLOOR, 1.0 - probability)


def _ln(multipliers: Mapping[str, float]) -> Dict[str, float]:
    return {key: math.log(mult) for key, mult in multipliers.items()}


@dataclass(frozen=True)
class RiskBands:
    """Probability thresholds for an outcome (inclusive lower bounds)."""
    moderate: float
    high: float

    def classify(self, probability: float) -> RiskLevel:
        if probability >= self.high:
            return RiskLevel.HIGH
        if probability >= self.moderate:
            return RiskLevel.MODERATE
        return RiskLevel.LOW


@dataclass(frozen=True)
class OutcomeModel:
    """
    Everything one outcome needs to score a patient.

    Attributes:
        outcome: Which harm this model predicts
        intercept: Baseline log-odds
        mobility_weights: Log-odds per mobility level
        shared_factors: Tags this outcome takes from the shared weight table
        specific_weights: Outcome-specific log-odds (override shared weights)
        evaluation_order: Order in which tags are evaluated and reported
        interactions: (mobility, cognition) -> log-odds penalty
        bands: Risk band thresholds
    """
    outcome: Outcome
    intercept: float
    mobility_weights: Mapping[str, float]
    shared_factors: Tuple[str, ...]
    specific_weights: Mapping[str, float]
    evaluation_order: Tuple[str, ...]
    bands: RiskBands
    interactions: Mapping[Tuple[str, str], float] = field(
        default_factory=lambda: MappingProxyType({})
    )
    shared_weights: Mapping[str, float] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self):
        missing_levels = set(MOBILITY_LEVELS) - set(self.mobility_weights)
        if missing_levels:
            raise ValueError(
                f"{self.outcome.value}: mobility weights missing {sorted(missing_levels)}"
            )
        for tag in self.evaluation_order:
            if tag == INTERACTION_STEP:
                continue
            if tag in self.specific_weights:
                continue
            if tag in self.shared_factors and tag in self.shared_weights:
                continue
            raise ValueError(f"{self.outcome.value}: no weight for factor '{tag}'")
        for mobility, cognition in self.interactions:
            if mobility not in MOBILITY_LEVELS or cognition not in COGNITION_LEVELS:
                raise ValueError(
                    f"{self.outcome.value}: bad interaction key ({mobility}, {cognition})"
                )

    def weight_for(self, tag: str) -> float:
        """Resolve a factor tag to its log-odds weight for this outcome."""
        if tag in self.specific_weights:
            return self.specific_weights[tag]
        return self.shared_weights[tag]

    def mobility_weight(self, mobility: str) -> float:
        return self.mobility_weights[mobility]

    def interaction_weight(self, mobility: str, cognition: str) -> float:
        return self.interactions.get((mobility, cognition), 0.0)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary (weights as log-odds)."""
        return {
            "intercept": self.intercept,
            "mobility_weights": dict(self.mobility_weights),
            "shared_factors": {
                tag: self.shared_weights[tag] for tag in self.shared_factors
            },
            "specific_weights": dict(self.specific_weights),
            "interactions": {
                f"{mob}+{cog}": weight for (mob, cog), weight in self.interactions.items()
            },
            "evaluation_order": list(self.evaluation_order),
            "bands": {"moderate": self.bands.moderate, "high": self.bands.high},
        }


@dataclass(frozen=True)
class CalibrationTable:
    """Process-wide, read-only set of outcome models."""
    models: Mapping[Outcome, OutcomeModel]
    shared_weights: Mapping[str, float]
    probability_cap: float = PROBABILITY_CAP

    def model_for(self, outcome: Union[Outcome, str]) -> OutcomeModel:
        return self.models[Outcome.parse(outcome)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probability_cap": self.probability_cap,
            "shared_weights": dict(self.shared_weights),
            "outcomes": {o.value: m.to_dict() for o, m in self.models.items()},
        }


# =============================================================================
# CALIBRATION CONSTANTS (odds multipliers)
# =============================================================================

SHARED_MULTIPLIERS = {
    "age_65+": 1.3,
    "age_70+": 1.3,   # cumulative with 65+
    "age_80+": 1.4,   # cumulative with 65+ and 70+
    "icu": 2.0,
    "stepdown": 1.3,
    "malnutrition": 1.6,
    "low_albumin": 1.5,
    "obesity": 1.3,
    "diabetes": 1.2,
    "neuropathy": 1.4,
    "parkinson": 1.6,
    "stroke": 1.8,
    "walker_baseline": 1.4,
    "dependent_baseline": 2.0,
}

AGE_BANDS = ("age_65+", "age_70+", "age_80+")
BASELINE_FUNCTION_FACTORS = ("walker_baseline", "dependent_baseline")
CARE_SETTING_FACTORS = ("icu", "stepdown")


def build_calibration_table() -> CalibrationTable:
    """Build the frozen calibration table."""
    shared = MappingProxyType(_ln(SHARED_MULTIPLIERS))

    def frozen(multipliers: Mapping[str, float]) -> Mapping[str, float]:
        return MappingProxyType(_ln(multipliers))

    deconditioning = OutcomeModel(
        outcome=Outcome.DECONDITIONING,
        intercept=-2.0,
        mobility_weights=frozen({
            "bedbound": 5.6,
            "chair_bound": 3.0,
            "standing_assist": 1.8,
            "walking_assist": 1.3,
            "independent": 1.0,
        }),
        shared_factors=AGE_BANDS + CARE_SETTING_FACTORS
        + ("malnutrition", "low_albumin") + BASELINE_FUNCTION_FACTORS,
        specific_weights=frozen({
            "cog_mild": 1.3,
            "cog_delirium": 1.7,
            "steroids": 1.2,
            "immobile_ge3": 1.6,
        }),
        evaluation_order=AGE_BANDS + CARE_SETTING_FACTORS
        + ("malnutrition", "low_albumin") + BASELINE_FUNCTION_FACTORS
        + ("cog_mild", "cog_delirium", "steroids", "immobile_ge3"),
        bands=RiskBands(moderate=0.15, high=0.25),
        shared_weights=shared,
    )

    vte = OutcomeModel(
        outcome=Outcome.VTE,
        intercept=-4.18,
        mobility_weights=frozen({
            "bedbound": 3.6,
            "chair_bound": 2.0,
            "standing_assist": 1.5,
            "walking_assist": 1.2,
            "independent": 1.0,
        }),
        shared_factors=CARE_SETTING_FACTORS + AGE_BANDS + ("obesity",),
        specific_weights=frozen({
            "immobile_ge3": 1.8,
            "active_cancer": 2.0,
            "history_vte": 3.0,
            "postop": 1.8,
            "trauma": 2.2,
            "no_prophylaxis": 2.5,
        }),
        evaluation_order=CARE_SETTING_FACTORS
        + ("active_cancer", "history_vte", "postop", "trauma",
           "immobile_ge3", "no_prophylaxis")
        + AGE_BANDS + ("obesity",),
        bands=RiskBands(moderate=0.02, high=0.04),
        shared_weights=shared,
    )

    falls = OutcomeModel(
        outcome=Outcome.FALLS,
        intercept=-5.8,
        mobility_weights=frozen({
            "bedbound": 25.0,
            "chair_bound": 15.0,
            "standing_assist": 8.0,
            "walking_assist": 3.0,
            "independent": 1.0,
        }),
        shared_factors=AGE_BANDS + BASELINE_FUNCTION_FACTORS,
        specific_weights=frozen({
            "cog_mild": 1.6,
            "cog_delirium": 2.6,
            "sedating_meds": 1.8,
            "stroke": 1.6,
            "devices": 1.3,
            "orthopedic": 1.5,
        }),
        evaluation_order=("cog_mild", "cog_delirium", "sedating_meds", "stroke",
                          "devices", "orthopedic", INTERACTION_STEP)
        + AGE_BANDS + BASELINE_FUNCTION_FACTORS,
        bands=RiskBands(moderate=0.02, high=0.04),
        interactions=MappingProxyType({
            ("bedbound", "delirium_dementia"): math.log(1.8),
            ("chair_bound", "delirium_dementia"): math.log(1.5),
        }),
        shared_weights=shared,
    )

    pressure = OutcomeModel(
        outcome=Outcome.PRESSURE,
        intercept=-3.66,
        mobility_weights=frozen({
            "bedbound": 4.0,
            "chair_bound": 2.5,
            "standing_assist": 1.6,
            "walking_assist": 1.2,
            "independent": 1.0,
        }),
        shared_factors=AGE_BANDS + ("malnutrition", "obesity")
        + BASELINE_FUNCTION_FACTORS + CARE_SETTING_FACTORS,
        specific_weights=frozen({
            "moisture": 1.6,
            "low_albumin": 1.5,
            "diabetes": 1.3,
            "immobile_ge3": 1.6,
        }),
        evaluation_order=AGE_BANDS
        + ("low_albumin", "diabetes", "immobile_ge3", "malnutrition",
           "obesity", "moisture")
        + BASELINE_FUNCTION_FACTORS + CARE_SETTING_FACTORS,
        bands=RiskBands(moderate=0.02, high=0.04),
        shared_weights=shared,
    )

    return CalibrationTable(
        models=MappingProxyType({
            Outcome.DECONDITIONING: deconditioning,
            Outcome.VTE: vte,
            Outcome.FALLS: falls,
            Outcome.PRESSURE: pressure,
        }),
        shared_weights=shared,
    )


DEFAULT_CALIBRATION = build_calibration_table()


def probability_from_score(model: OutcomeModel, score: float, cap: float = PROBABILITY_CAP) -> float:
    """Apply the outcome intercept through the logistic and cap the result."""
    return min(logistic(model.intercept + score), cap)


def odds_ratio(probability: float, reference_probability: float) -> float:
    """Odds of the patient relative to odds of the reference case."""
    return odds(probability) / max(ODDS_FLOOR, odds(reference_probability))


def band_probability(
    outcome: Union[Outcome, str],
    probability: float,
    table: CalibrationTable = DEFAULT_CALIBRATION,
) -> RiskLevel:
    """Map a probability to low / moderate / high for an outcome."""
    return table.model_for(outcome).bands.classify(probability)
