"""
Mobility Risk Agent - Feature Extraction

Normalizes a raw patient snapshot into a fully-resolved RiskAssessmentInput
and derives the FeatureFlags shared by all four outcome models and the
mobility prescription.

================================================================================
PIPELINE
================================================================================

    raw mapping ──► normalize_input() ──► RiskAssessmentInput (frozen)
                                                │
                                                ▼
                                       extract_features() ──► FeatureFlags

normalize_input() is the ONLY place defaults are applied and vocabularies are
checked. Anything malformed raises InvalidAssessmentInput before any score is
computed, so the scorers never see an unknown category.

FLAG DERIVATION:
────────────────
- Age bands are cumulative: an 82 year old sets age_65+, age_70+ and age_80+
- BMI comes from weight and height when both are known, otherwise None
- obesity     = explicit flag OR comorbidity "obesity" OR BMI >= 30
- devices     = any listed device OR foley / central line / feeding tube / vent
- immobile_ge3 = days_immobile >= 3
- moisture    = incontinent

================================================================================
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .config import (
    BASELINE_FUNCTIONS,
    COGNITION_LEVELS,
    LEVEL_OF_CARE_ALIASES,
    LEVELS_OF_CARE,
    MOBILITY_LEVELS,
    SEX_ALIASES,
    SEXES,
)
from .text_parser import (
    AdmissionCategory,
    bucket_medications,
    get_parser,
    resolve_admission_category,
)

# Configure module logger
logger = logging.getLogger(__name__)


REQUIRED_FIELDS = ("age", "sex", "level_of_care", "mobility_status")

IMMOBILE_DAYS_THRESHOLD = 3
OBESITY_BMI = 30.0

# Categories that also raise the stroke flag used by the falls model.
STROKE_CATEGORIES = (AdmissionCategory.NEURO, AdmissionCategory.MEDICAL_PULM)

_TRUE_STRINGS = {"true", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "no", "n", "0"}


class InvalidAssessmentInput(ValueError):
    """Raised when a patient snapshot cannot be normalized."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


# =============================================================================
# INPUT SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class RiskAssessmentInput:
    """
    Fully-resolved, immutable patient snapshot.

    Every optional field already carries its default; categorical fields are
    lowercased members of their vocabularies.
    """
    # Required
    age: float
    sex: str
    level_of_care: str
    mobility_status: str

    # Categorical with defaults
    cognitive_status: str = "normal"
    baseline_function: str = "independent"

    # Anthropometrics (None when unknown)
    weight_kg: Optional[float] = None
    height_cm: Optional[float] = None

    # Free text and lists
    admission_diagnosis: str = ""
    comorbidities: Tuple[str, ...] = ()
    medications: Tuple[str, ...] = ()
    devices: Tuple[str, ...] = ()

    days_immobile: float = 0.0
    los_expected_days: Optional[float] = None

    # Safety booleans
    incontinent: bool = False
    albumin_low: bool = False
    on_vte_prophylaxis: bool = True

    # Structured medication buckets (None = derive from medication list)
    on_sedating_medications: Optional[bool] = None
    on_anticoagulants: Optional[bool] = None
    on_steroids: Optional[bool] = None

    # Structured comorbidities
    has_diabetes: bool = False
    has_malnutrition: bool = False
    has_obesity: bool = False
    has_neuropathy: bool = False
    has_parkinson: bool = False
    has_stroke_history: bool = False
    has_active_cancer: bool = False
    has_vte_history: bool = False

    # Structured admission type
    is_postoperative: bool = False
    is_trauma_admission: bool = False
    is_sepsis: bool = False
    is_cardiac_admission: bool = False
    is_neuro_admission: bool = False
    is_orthopedic: bool = False
    is_oncology: bool = False

    # Lines and devices
    has_foley_catheter: bool = False
    has_central_line: bool = False
    has_feeding_tube: bool = False
    has_ventilator: bool = False

    @property
    def bmi(self) -> Optional[float]:
        """Body mass index, or None when weight or height is unknown."""
        if self.weight_kg is None or self.height_cm is None:
            return None
        return self.weight_kg / (self.height_cm / 100.0) ** 2

    @property
    def structured_admission(self) -> Dict[str, bool]:
        return {
            "is_cardiac_admission": self.is_cardiac_admission,
            "is_neuro_admission": self.is_neuro_admission,
            "is_orthopedic": self.is_orthopedic,
            "is_oncology": self.is_oncology,
            "is_postoperative": self.is_postoperative,
            "is_trauma_admission": self.is_trauma_admission,
            "is_sepsis": self.is_sepsis,
        }


_BOOL_FIELDS = tuple(
    f.name for f in fields(RiskAssessmentInput)
    if f.type in ("bool", bool)
)
_OPTIONAL_BOOL_FIELDS = (
    "on_sedating_medications",
    "on_anticoagulants",
    "on_steroids",
)


# =============================================================================
# NORMALIZATION
# =============================================================================

def _as_number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        try:
            value = float(str(value).strip())
        except (TypeError, ValueError):
            raise InvalidAssessmentInput(
                f"{name} must be a number, got {value!r}", name
            ) from None
    value = float(value)
    if not math.isfinite(value):
        raise InvalidAssessmentInput(f"{name} must be finite", name)
    return value


def _as_non_negative(value: Any, name: str) -> float:
    number = _as_number(value, name)
    if number < 0:
        raise InvalidAssessmentInput(f"{name} must be >= 0, got {number:g}", name)
    return number


def _as_positive_or_none(value: Any, name: str) -> Optional[float]:
    """Non-positive anthropometrics are treated as unknown."""
    if value is None:
        return None
    number = _as_number(value, name)
    return number if number > 0 else None


def _as_bool(value: Any, name: str, default: Optional[bool]) -> Optional[bool]:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise InvalidAssessmentInput(f"{name} must be a boolean, got {value!r}", name)


def _as_choice(
    value: Any,
    name: str,
    choices: Tuple[str, ...],
    default: Optional[str] = None,
    aliases: Optional[Mapping[str, str]] = None,
) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is None:
            raise InvalidAssessmentInput(f"{name} is required", name)
        return default
    lowered = str(value).strip().lower()
    if aliases:
        lowered = aliases.get(lowered, lowered)
    if lowered not in choices:
        raise InvalidAssessmentInput(
            f"Unknown {name} '{value}'. Expected one of: {', '.join(choices)}",
            name,
        )
    return lowered


def _as_string_tuple(value: Any, name: str, lowercase: bool = False) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items: Iterable[Any] = [part for part in value.split(",")]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        raise InvalidAssessmentInput(f"{name} must be a list of strings", name)
    cleaned = []
    for item in items:
        text = str(item).strip()
        if text:
            cleaned.append(text.lower() if lowercase else text)
    return tuple(cleaned)


def normalize_input(raw: Mapping[str, Any]) -> RiskAssessmentInput:
    """
    Resolve a raw patient mapping into a RiskAssessmentInput.

    Args:
        raw: Patient snapshot as received (e.g. parsed JSON). Unknown keys
            are ignored.

    Returns:
        Frozen RiskAssessmentInput with every default applied

    Raises:
        InvalidAssessmentInput: a required field is missing, a number is
            malformed or negative, or a categorical value is unknown
    """
    if isinstance(raw, RiskAssessmentInput):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidAssessmentInput("Assessment input must be a mapping")

    for name in REQUIRED_FIELDS:
        if raw.get(name) is None:
            raise InvalidAssessmentInput(f"{name} is required", name)

    values: Dict[str, Any] = {
        "age": _as_non_negative(raw["age"], "age"),
        "sex": _as_choice(raw["sex"], "sex", SEXES, aliases=SEX_ALIASES),
        "level_of_care": _as_choice(
            raw["level_of_care"], "level_of_care", LEVELS_OF_CARE,
            aliases=LEVEL_OF_CARE_ALIASES,
        ),
        "mobility_status": _as_choice(
            raw["mobility_status"], "mobility_status", MOBILITY_LEVELS
        ),
        "cognitive_status": _as_choice(
            raw.get("cognitive_status"), "cognitive_status", COGNITION_LEVELS,
            default="normal",
        ),
        "baseline_function": _as_choice(
            raw.get("baseline_function"), "baseline_function", BASELINE_FUNCTIONS,
            default="independent",
        ),
        "weight_kg": _as_positive_or_none(raw.get("weight_kg"), "weight_kg"),
        "height_cm": _as_positive_or_none(raw.get("height_cm"), "height_cm"),
        "admission_diagnosis": str(raw.get("admission_diagnosis") or ""),
        "comorbidities": _as_string_tuple(
            raw.get("comorbidities"), "comorbidities", lowercase=True
        ),
        "medications": _as_string_tuple(raw.get("medications"), "medications"),
        "devices": _as_string_tuple(raw.get("devices"), "devices"),
        "days_immobile": _as_non_negative(raw.get("days_immobile") or 0, "days_immobile"),
        "los_expected_days": _as_positive_or_none(
            raw.get("los_expected_days"), "los_expected_days"
        ),
    }

    for name in _BOOL_FIELDS:
        default = name == "on_vte_prophylaxis"
        values[name] = _as_bool(raw.get(name), name, default)
    for name in _OPTIONAL_BOOL_FIELDS:
        values[name] = _as_bool(raw.get(name), name, None)

    return RiskAssessmentInput(**values)


# =============================================================================
# FEATURE FLAGS
# =============================================================================

@dataclass(frozen=True)
class FeatureFlags:
    """
    Deterministic features derived from one RiskAssessmentInput.

    Attributes:
        flags: Boolean factor tags (age_65+, icu, stroke, ...)
        mobility: Mobility level driving the mobility weight
        cognition: Cognitive status
        admit_category: Admission category after structured precedence
        text_category: Category derived from the diagnosis text alone
        level_of_care: Care setting
        bmi: Computed BMI, None when unavailable
        on_anticoagulant: Anticoagulant bucket (reported, not scored)
    """
    flags: Mapping[str, bool]
    mobility: str
    cognition: str
    admit_category: AdmissionCategory
    text_category: AdmissionCategory
    level_of_care: str
    bmi: Optional[float] = None
    on_anticoagulant: bool = False

    @property
    def active_tags(self) -> Tuple[str, ...]:
        return tuple(tag for tag, on in self.flags.items() if on)

    def is_set(self, tag: str) -> bool:
        return bool(self.flags.get(tag, False))

    def reference(self) -> "FeatureFlags":
        """Same patient, fully mobile and not recently immobile."""
        return replace(
            self,
            mobility="independent",
            flags=MappingProxyType({**self.flags, "immobile_ge3": False}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flags": dict(self.flags),
            "mobility": self.mobility,
            "cognition": self.cognition,
            "admit_category": self.admit_category.value,
            "text_category": self.text_category.value,
            "level_of_care": self.level_of_care,
            "bmi": self.bmi,
            "on_anticoagulant": self.on_anticoagulant,
        }


def extract_features(inp: RiskAssessmentInput) -> FeatureFlags:
    """
    Derive FeatureFlags from a normalized input.

    Args:
        inp: Output of normalize_input()

    Returns:
        FeatureFlags shared by every outcome model
    """
    comorbidities = set(inp.comorbidities)
    meds = bucket_medications(
        inp.medications,
        sedating=inp.on_sedating_medications,
        anticoagulant=inp.on_anticoagulants,
        steroids=inp.on_steroids,
    )

    text_category = get_parser().categorize(inp.admission_diagnosis).category
    admit_category = resolve_admission_category(inp.structured_admission, text_category)

    bmi = inp.bmi

    flags = {
        # Shared factors
        "age_65+": inp.age >= 65,
        "age_70+": inp.age >= 70,
        "age_80+": inp.age >= 80,
        "icu": inp.level_of_care == "icu",
        "stepdown": inp.level_of_care == "stepdown",
        "malnutrition": inp.has_malnutrition or "malnutrition" in comorbidities,
        "low_albumin": inp.albumin_low,
        "obesity": (
            inp.has_obesity
            or "obesity" in comorbidities
            or (bmi is not None and bmi >= OBESITY_BMI)
        ),
        "diabetes": inp.has_diabetes or "diabetes" in comorbidities,
        "neuropathy": inp.has_neuropathy or "neuropathy" in comorbidities,
        "parkinson": inp.has_parkinson or "parkinson" in comorbidities,
        "stroke": (
            inp.has_stroke_history
            or "stroke" in comorbidities
            or inp.is_neuro_admission
            or text_category in STROKE_CATEGORIES
        ),
        "walker_baseline": inp.baseline_function == "walker",
        "dependent_baseline": inp.baseline_function == "dependent",

        # Cognition tiers
        "cog_mild": inp.cognitive_status == "mild_impairment",
        "cog_delirium": inp.cognitive_status == "delirium_dementia",

        # VTE
        "active_cancer": (
            inp.has_active_cancer
            or "active_cancer" in comorbidities
            or inp.is_oncology
            or text_category == AdmissionCategory.ONCOLOGY
        ),
        "history_vte": inp.has_vte_history or "history_vte" in comorbidities,
        "postop": inp.is_postoperative or text_category == AdmissionCategory.POSTOP,
        "trauma": inp.is_trauma_admission or text_category == AdmissionCategory.TRAUMA,
        "immobile_ge3": inp.days_immobile >= IMMOBILE_DAYS_THRESHOLD,
        "no_prophylaxis": not inp.on_vte_prophylaxis,

        # Falls
        "sedating_meds": meds.sedating,
        "devices": (
            len(inp.devices) > 0
            or inp.has_foley_catheter
            or inp.has_central_line
            or inp.has_feeding_tube
            or inp.has_ventilator
        ),
        "orthopedic": admit_category == AdmissionCategory.ORTHO,

        # Deconditioning / pressure
        "steroids": meds.steroids,
        "moisture": inp.incontinent,
    }

    features = FeatureFlags(
        flags=MappingProxyType({k: bool(v) for k, v in flags.items()}),
        mobility=inp.mobility_status,
        cognition=inp.cognitive_status,
        admit_category=admit_category,
        text_category=text_category,
        level_of_care=inp.level_of_care,
        bmi=bmi,
        on_anticoagulant=meds.anticoagulant,
    )

    logger.debug(
        f"Extracted features: mobility={features.mobility}, "
        f"admit_category={admit_category.value}, "
        f"{len(features.active_tags)} active flags, "
        f"medications={meds.to_dict()}"
    )
    return features
