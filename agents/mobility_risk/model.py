"""
Mobility Risk Agent - Outcome Scorers & Orchestrator

This module turns FeatureFlags into four calibrated, explainable outcome
results and merges them with the mobility prescription.

================================================================================
WHY AN EXPLICIT LOG-ODDS MODEL
================================================================================

Every number shown to a nurse or therapist must be traceable:

1. EXPLAINABILITY:
   ───────────────
   Each outcome carries an ordered list of contributing factor tags:

       ["mobility:bedbound", "cog_delirium", "stroke",
        "interaction:bedbound+delirium_dementia"]

   The first tag is always the mobility level; the rest follow the fixed
   evaluation order of the outcome model.

2. RELATIVE RISK:
   ──────────────
   Absolute probabilities are hard to act on, so every result also carries
   odds_ratio_vs_mobile: the patient's odds divided by the odds of the SAME
   patient if they were fully mobile and not recently immobile.

       reference = flags with mobility=independent, immobile_ge3=False
       OR        = odds(p) / odds(p_reference)

3. DETERMINISM:
   ────────────
   No randomness, no counters, no shared mutable state. The calibration
   table is read-only and the same input always yields the same output.

================================================================================
ORCHESTRATION
================================================================================

    raw input ──► normalize ──► FeatureFlags ─┬─► deconditioning ─┐
                                              ├─► vte             │
                                              ├─► falls           ├─► merged result
                                              ├─► pressure        │        │
                     RiskAssessmentInput ─────┴─► prescription ───┘        ▼
                                                              stay-prediction extension

The stay-prediction extension is optional. If it fails, the base result is
returned unchanged.

================================================================================
"""

from __future__ import annotations

import copy
import importlib
import logging
from dataclasses import asdict, dataclass, field
from typing import (
    Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union,
)

import pandas as pd

from .calibration import (
    DEFAULT_CALIBRATION,
    INTERACTION_STEP,
    CalibrationTable,
    Outcome,
    RiskLevel,
    logistic,
    odds_ratio,
    probability_from_score,
    round_half_up,
)
from .config import settings
from .features import (
    FeatureFlags,
    InvalidAssessmentInput,
    RiskAssessmentInput,
    extract_features,
    normalize_input,
)
from .prescription import MobilityRecommendation, estimate_watt_goal

# Configure module logger
logger = logging.getLogger(__name__)


StayPredictor = Callable[[Dict[str, Any]], Mapping[str, Any]]

BASE_RESULT_KEYS = (
    Outcome.DECONDITIONING.value,
    Outcome.VTE.value,
    Outcome.FALLS.value,
    Outcome.PRESSURE.value,
    "mobility_recommendation",
    "input_echo",
)


# =============================================================================
# RESULT DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ScoreResult:
    """Raw log-odds score and the factor tags that produced it."""
    score: float
    factors: Tuple[str, ...]


@dataclass
class OutcomeResult:
    """
    Calibrated, banded risk for one outcome.

    Attributes:
        outcome: Which harm this result describes
        probability: Capped probability (unrounded)
        odds_ratio_vs_mobile: Odds relative to the fully-mobile reference case
        risk_level: low / moderate / high
        contributing_factors: Ordered factor tags, mobility first
    """
    outcome: Outcome
    probability: float
    odds_ratio_vs_mobile: float
    risk_level: RiskLevel
    contributing_factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "probability": round_half_up(self.probability, 4),
            "odds_ratio_vs_mobile": round_half_up(self.odds_ratio_vs_mobile, 2),
            "risk_level": self.risk_level.value,
            "contributing_factors": list(self.contributing_factors),
        }


@dataclass
class RiskAssessment:
    """
    Complete result for one patient: four outcomes plus the prescription.

    extensions holds keys added by the stay-prediction extension; they never
    replace the base keys.
    """
    outcomes: Dict[Outcome, OutcomeResult]
    mobility_recommendation: MobilityRecommendation
    input_echo: Dict[str, Any]
    extensions: Dict[str, Any] = field(default_factory=dict)

    def base_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            outcome.value: self.outcomes[outcome].to_dict() for outcome in Outcome
        }
        result["mobility_recommendation"] = self.mobility_recommendation.to_dict()
        result["input_echo"] = copy.deepcopy(self.input_echo)
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = copy.deepcopy(self.extensions)
        result.update(self.base_dict())
        return result


# =============================================================================
# OUTCOME SCORING
# =============================================================================

def score_outcome(
    outcome: Union[Outcome, str],
    flags: FeatureFlags,
    table: CalibrationTable = DEFAULT_CALIBRATION,
) -> ScoreResult:
    """
    Sum the log-odds contributions for one outcome.

    Args:
        outcome: Outcome key; unknown keys raise ValueError
        flags: Patient features
        table: Calibration table to score against

    Returns:
        ScoreResult with the score (intercept excluded) and ordered factors
    """
    model = table.model_for(outcome)

    score = model.mobility_weight(flags.mobility)
    factors = [f"mobility:{flags.mobility}"]

    for tag in model.evaluation_order:
        if tag == INTERACTION_STEP:
            weight = model.interaction_weight(flags.mobility, flags.cognition)
            if weight:
                score += weight
                factors.append(f"interaction:{flags.mobility}+{flags.cognition}")
            continue
        if flags.is_set(tag):
            score += model.weight_for(tag)
            factors.append(tag)

    return ScoreResult(score=score, factors=tuple(factors))


def compute_outcome(
    outcome: Union[Outcome, str],
    flags: FeatureFlags,
    table: CalibrationTable = DEFAULT_CALIBRATION,
) -> OutcomeResult:
    """
    Score, calibrate and band one outcome.

    The reference case is scored with the same model; its probability is not
    capped before the odds ratio is taken.
    """
    outcome = Outcome.parse(outcome)
    model = table.model_for(outcome)

    actual = score_outcome(outcome, flags, table)
    reference = score_outcome(outcome, flags.reference(), table)

    probability = probability_from_score(model, actual.score, table.probability_cap)
    reference_probability = logistic(model.intercept + reference.score)

    return OutcomeResult(
        outcome=outcome,
        probability=probability,
        odds_ratio_vs_mobile=odds_ratio(probability, reference_probability),
        risk_level=model.bands.classify(probability),
        contributing_factors=list(actual.factors),
    )


# =============================================================================
# ORCHESTRATOR
# =============================================================================

def _echo(raw: Union[Mapping[str, Any], RiskAssessmentInput]) -> Dict[str, Any]:
    if isinstance(raw, RiskAssessmentInput):
        return asdict(raw)
    return copy.deepcopy(dict(raw))


def load_stay_predictor(path: Optional[str]) -> Optional[StayPredictor]:
    """
    Resolve a dotted import path such as 'package.module.predict' to a callable.

    Returns None when no path is configured. A path that cannot be imported
    or does not name a callable raises ValueError.
    """
    if not path:
        return None

    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ValueError(f"Stay predictor path '{path}' must be 'module.callable'")

    try:
        predictor = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load stay predictor '{path}': {e}") from e

    if not callable(predictor):
        raise ValueError(f"Stay predictor '{path}' is not callable")

    logger.info(f"Stay predictor loaded: {path}")
    return predictor


class RiskCalculator:
    """
    Runs the full assessment pipeline for one or many patients.

    Example:
        >>> calculator = RiskCalculator()
        >>> result = calculator.assess({"age": 82, "sex": "female",
        ...                              "level_of_care": "ward",
        ...                              "mobility_status": "bedbound"})
        >>> result.outcomes[Outcome.FALLS].risk_level
        <RiskLevel.HIGH: 'high'>
    """

    def __init__(
        self,
        calibration: CalibrationTable = DEFAULT_CALIBRATION,
        stay_predictor: Optional[StayPredictor] = None,
    ):
        self.calibration = calibration
        self.stay_predictor = stay_predictor

    def assess(
        self,
        raw: Union[Mapping[str, Any], RiskAssessmentInput],
        echo: Optional[Mapping[str, Any]] = None,
    ) -> RiskAssessment:
        """
        Assess one patient.

        Args:
            raw: Patient snapshot (mapping or already-normalized input)
            echo: Payload to echo instead of raw, e.g. the request body
                before schema coercion

        Returns:
            RiskAssessment with all four outcomes and the prescription

        Raises:
            InvalidAssessmentInput: the snapshot could not be normalized
        """
        inp = normalize_input(raw)
        flags = extract_features(inp)

        outcomes = {
            outcome: compute_outcome(outcome, flags, self.calibration)
            for outcome in Outcome
        }
        assessment = RiskAssessment(
            outcomes=outcomes,
            mobility_recommendation=estimate_watt_goal(inp),
            input_echo=_echo(raw if echo is None else echo),
        )

        logger.debug(f"Features: {flags.to_dict()}")
        logger.debug(
            "Assessment complete: "
            + ", ".join(f"{o.value}={r.risk_level.value}" for o, r in outcomes.items())
        )

        if self.stay_predictor is not None and settings.stay_predictions_enabled:
            assessment.extensions = self._run_stay_predictor(assessment)

        return assessment

    def _run_stay_predictor(self, assessment: RiskAssessment) -> Dict[str, Any]:
        """Collect the keys the extension adds on top of the base result."""
        base = assessment.base_dict()
        try:
            augmented = self.stay_predictor(copy.deepcopy(base))
        except Exception as e:
            logger.warning(f"Stay prediction failed, returning base result: {e}")
            return {}

        if not isinstance(augmented, Mapping):
            logger.warning(
                f"Stay prediction returned {type(augmented).__name__}, expected a mapping"
            )
            return {}

        return {
            key: value for key, value in augmented.items() if key not in BASE_RESULT_KEYS
        }

    def assess_batch(
        self,
        records: Iterable[Union[Mapping[str, Any], RiskAssessmentInput]],
        echoes: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> List[RiskAssessment]:
        """
        Assess many patients, skipping records that fail validation.

        Args:
            records: Patient snapshots
            echoes: Optional payloads to echo, parallel to records

        Returns:
            Assessments for the valid records, in input order
        """
        records = list(records)
        if echoes is not None and len(echoes) != len(records):
            raise ValueError(
                f"Got {len(echoes)} echo payloads for {len(records)} records"
            )
        logger.info(f"Batch assessing {len(records)} patients")

        assessments = []
        for index, record in enumerate(records):
            echo = echoes[index] if echoes is not None else None
            try:
                assessments.append(self.assess(record, echo=echo))
            except InvalidAssessmentInput as e:
                logger.warning(f"Skipping record {index}: {e}")

        high = sum(
            1 for a in assessments
            if any(r.risk_level == RiskLevel.HIGH for r in a.outcomes.values())
        )
        logger.info(
            f"Batch assessment complete: {len(assessments)} assessed, "
            f"{len(records) - len(assessments)} skipped, {high} with a high-risk outcome"
        )
        return assessments


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_calculator_instance: Optional[RiskCalculator] = None


def get_calculator() -> RiskCalculator:
    """Get or create the shared RiskCalculator instance."""
    global _calculator_instance
    if _calculator_instance is None:
        _calculator_instance = RiskCalculator(
            stay_predictor=load_stay_predictor(settings.stay_predictor_path)
        )
    return _calculator_instance


def calculate_risks(raw: Union[Mapping[str, Any], RiskAssessmentInput]) -> Dict[str, Any]:
    """
    Assess one patient and return the serialized result.

    Returns:
        Dict with deconditioning, vte, falls, pressure,
        mobility_recommendation and input_echo
    """
    return get_calculator().assess(raw).to_dict()


def results_to_frame(results: Iterable[RiskAssessment]) -> pd.DataFrame:
    """
    Flatten assessments into one row per patient for reporting.

    Columns: <outcome>_probability, <outcome>_risk_level,
    <outcome>_odds_ratio for each outcome, then watt_goal,
    duration_min_per_session, sessions_per_day and total_daily_energy.
    """
    rows = []
    for assessment in results:
        row: Dict[str, Any] = {}
        for outcome in Outcome:
            serialized = assessment.outcomes[outcome].to_dict()
            row[f"{outcome.value}_probability"] = serialized["probability"]
            row[f"{outcome.value}_risk_level"] = serialized["risk_level"]
            row[f"{outcome.value}_odds_ratio"] = serialized["odds_ratio_vs_mobile"]
        rec = assessment.mobility_recommendation
        row["watt_goal"] = rec.watt_goal
        row["duration_min_per_session"] = rec.duration_min_per_session
        row["sessions_per_day"] = rec.sessions_per_day
        row["total_daily_energy"] = rec.total_daily_energy
        rows.append(row)

    columns = [
        f"{outcome.value}_{suffix}"
        for outcome in Outcome
        for suffix in ("probability", "risk_level", "odds_ratio")
    ] + ["watt_goal", "duration_min_per_session", "sessions_per_day", "total_daily_energy"]
    return pd.DataFrame(rows, columns=columns)
