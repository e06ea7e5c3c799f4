"""
Mobility Risk Agent - Mobility Dose Prescription

Computes the bedside cycle-ergometer prescription: target power, session
length and sessions per day.

================================================================================
ANTHROPOMETRIC PRESCRIPTION
================================================================================

Intensity is chosen in watts per kilogram, then converted to absolute watts:

    ┌──────────────────────────────────────────────────────────────────┐
    │  1. Band by mobility (W/kg)   start at the midpoint              │
    │  2. Care setting              ICU ×0.85, stepdown ×0.93          │
    │  3. Age (first match)         ≥80 ×0.88, ≥70 ×0.93, ≤45 ×1.05    │
    │  4. Sex                       male ×1.03                         │
    │  5. BMI ceiling               ≥40: 0.28, ≥35: 0.30, <18.5: 0.26  │
    │  6. Global clamp              0.18 – 0.48 W/kg                   │
    │  7. × body weight             (flat fallback table if unknown)   │
    │  8. Device recalibration      ×1.4, floor 25 W                   │
    │  9. Final clamp               25 – 70 W, 1 decimal               │
    └──────────────────────────────────────────────────────────────────┘

DEVICE CALIBRATION:
───────────────────
The ward ergometer uses an electromagnetic flywheel whose lowest usable
resistance already produces about 25 W at typical elderly cadence (40-60 RPM).
Resistance levels 1-9 span roughly 25-70 W, which is where the final clamp
and the "equivalent resistance level" in the notes come from.

================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .calibration import round_half_up
from .features import RiskAssessmentInput

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# PRESCRIPTION CONSTANTS
# =============================================================================

WKG_BANDS: Dict[str, Tuple[float, float]] = {
    "bedbound": (0.20, 0.28),
    "chair_bound": (0.22, 0.30),
    "standing_assist": (0.25, 0.34),
    "walking_assist": (0.28, 0.40),
    "independent": (0.32, 0.45),
}

CARE_SETTING_FACTORS = {"icu": 0.85, "stepdown": 0.93}
MALE_FACTOR = 1.03

WKG_FLOOR = 0.18
WKG_CEILING = 0.48

# Used when body weight is unknown.
FALLBACK_WATTS = {
    "bedbound": 14.0,
    "chair_bound": 18.0,
    "standing_assist": 22.0,
    "walking_assist": 30.0,
    "independent": 36.0,
}
FALLBACK_ICU_FACTOR = 0.9

DEVICE_GAIN = 1.4
MIN_WATTS = 25.0
MAX_WATTS = 70.0

SESSIONS_PER_DAY = 2

RESISTANCE_BASE_LEVEL = 3
RESISTANCE_LEVEL_SPAN = 8

NOTES_TEMPLATE = (
    "Target light–moderate effort ({watts}W ≈ resistance level {level}). "
    "Adjust by symptoms, BP/HR response, and RPE 2–3/10. "
    "If undue fatigue or hemodynamic instability, reduce resistance level and reassess."
)

LEGACY_BASE_WATTS = {
    "bedbound": 12.0,
    "chair_bound": 16.0,
    "standing_assist": 20.0,
    "walking_assist": 28.0,
    "independent": 35.0,
}
LEGACY_NOTES = (
    "Aim for light–moderate effort. Increase gradually if well tolerated. "
    "Walking or sit-to-stand sets can substitute when safe."
)


@dataclass
class MobilityRecommendation:
    """
    Cycle-ergometer dose for one patient.

    Attributes:
        watt_goal: Target power in watts (25-70, one decimal)
        duration_min_per_session: Minutes per session (8, 10, 12 or 15)
        sessions_per_day: Sessions per day
        total_daily_energy: watt_goal × duration × sessions, rounded
        notes: Clinician-facing guidance including the resistance level
        debug: Intermediate values used to build the prescription
    """
    watt_goal: float
    duration_min_per_session: int
    sessions_per_day: int
    notes: str
    total_daily_energy: Optional[int] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: Dict[str, Any] = {
            "watt_goal": self.watt_goal,
            "duration_min_per_session": self.duration_min_per_session,
            "sessions_per_day": self.sessions_per_day,
        }
        if self.total_daily_energy is not None:
            result["total_daily_energy"] = self.total_daily_energy
        result["notes"] = self.notes
        if self.debug:
            result["debug"] = dict(self.debug)
        return result


def _age_factor(age: float) -> float:
    if age >= 80:
        return 0.88
    if age >= 70:
        return 0.93
    if age <= 45:
        return 1.05
    return 1.0


def _bmi_ceiling(bmi: Optional[float]) -> Optional[float]:
    if bmi is None:
        return None
    if bmi >= 40:
        return 0.28
    if bmi >= 35:
        return 0.30
    if bmi < 18.5:
        return 0.26
    return None


def session_duration(mobility: str, level_of_care: str) -> int:
    """Minutes per session for a mobility level and care setting."""
    if level_of_care == "icu" or mobility in ("bedbound", "chair_bound"):
        return 8 if mobility == "bedbound" else 10
    if mobility in ("standing_assist", "walking_assist"):
        return 12
    return 15


def resistance_level(watt_goal: float) -> int:
    """Equivalent flywheel resistance level for a target power."""
    return int(round_half_up(
        (watt_goal - MIN_WATTS) / (MAX_WATTS - MIN_WATTS) * RESISTANCE_LEVEL_SPAN
        + RESISTANCE_BASE_LEVEL
    ))


def format_watts(watt_goal: float) -> str:
    return f"{watt_goal:g}"


def estimate_watt_goal(inp: RiskAssessmentInput) -> MobilityRecommendation:
    """
    Anthropometric-aware cycle-ergometer prescription.

    Args:
        inp: Normalized patient snapshot

    Returns:
        MobilityRecommendation with debug payload
    """
    age = int(inp.age)
    mobility = inp.mobility_status
    level_of_care = inp.level_of_care
    weight = inp.weight_kg
    bmi = inp.bmi

    low, high = WKG_BANDS[mobility]
    wkg = 0.5 * (low + high)
    wkg *= CARE_SETTING_FACTORS.get(level_of_care, 1.0)
    wkg *= _age_factor(age)
    if inp.sex == "male":
        wkg *= MALE_FACTOR

    ceiling = _bmi_ceiling(bmi)
    if ceiling is not None:
        wkg = min(wkg, ceiling)
    wkg = max(WKG_FLOOR, min(WKG_CEILING, wkg))

    if weight is not None:
        watts = wkg * weight
    else:
        watts = FALLBACK_WATTS[mobility]
        if level_of_care == "icu":
            watts *= FALLBACK_ICU_FACTOR
        watts *= _age_factor(age)

    # Flywheel minimum resistance
    watts = max(watts * DEVICE_GAIN, MIN_WATTS)
    watts = max(MIN_WATTS, min(MAX_WATTS, watts))
    watt_goal = round_half_up(watts, 1)

    duration = session_duration(mobility, level_of_care)
    sessions = SESSIONS_PER_DAY

    notes = NOTES_TEMPLATE.format(
        watts=format_watts(watt_goal),
        level=resistance_level(watt_goal),
    )

    recommendation = MobilityRecommendation(
        watt_goal=watt_goal,
        duration_min_per_session=duration,
        sessions_per_day=sessions,
        total_daily_energy=int(round_half_up(watt_goal * duration * sessions)),
        notes=notes,
        debug={
            "used_wkg": round_half_up(wkg, 3) if weight is not None else None,
            "bmi": round_half_up(bmi, 1) if bmi is not None else None,
            "age": age,
            "level_of_care": level_of_care,
            "mobility": mobility,
        },
    )

    logger.debug(
        f"Prescribed {watt_goal}W x {duration} min x {sessions} "
        f"({mobility}, {level_of_care}, weight {'known' if weight else 'unknown'})"
    )
    return recommendation


def estimate_watt_goal_legacy(inp: RiskAssessmentInput) -> MobilityRecommendation:
    """
    Mobility-only prescription kept for comparison with older goals.

    Additive watt adjustments, no device recalibration and no BMI logic.
    """
    mobility = inp.mobility_status
    base = LEGACY_BASE_WATTS[mobility]

    size_adjustment = 0.0
    if inp.weight_kg is not None:
        size_adjustment = 0.12 * (inp.weight_kg - 70.0)

    if inp.age >= 80:
        base -= 6.0
    elif inp.age >= 70:
        base -= 4.0
    elif inp.age <= 45:
        base += 3.0

    if inp.sex == "male":
        base += 2.0
    if inp.level_of_care == "icu":
        base -= 4.0

    target = max(10.0, min(80.0, base + size_adjustment))

    if inp.level_of_care == "icu" or mobility in ("bedbound", "chair_bound"):
        duration = 10
    else:
        duration = 15

    return MobilityRecommendation(
        watt_goal=round_half_up(target, 1),
        duration_min_per_session=duration,
        sessions_per_day=SESSIONS_PER_DAY,
        notes=LEGACY_NOTES,
    )
