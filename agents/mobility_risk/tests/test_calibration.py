"""
Mobility Risk Agent - Calibration Unit Tests

Tests for the calibration table, probability helpers and risk bands.
Run with: pytest tests/test_calibration.py -v
"""

import dataclasses
import json
import math

import pytest

# Import the calibration module
import sys
import os

# Add agents directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from mobility_risk.calibration import (
    DEFAULT_CALIBRATION,
    Outcome,
    OutcomeModel,
    RiskBands,
    RiskLevel,
    band_probability,
    logistic,
    odds,
    odds_ratio,
    probability_from_score,
    round_half_up,
)


class TestRiskBands:
    """Tests for exact risk band boundaries."""

    @pytest.mark.parametrize("probability,expected", [
        (0.25, RiskLevel.HIGH),
        (0.2499, RiskLevel.MODERATE),
        (0.15, RiskLevel.MODERATE),
        (0.1499, RiskLevel.LOW),
    ])
    def test_deconditioning_bands(self, probability, expected):
        """Deconditioning: moderate at 15%, high at 25%."""
        assert band_probability("deconditioning", probability) == expected

    @pytest.mark.parametrize("outcome", ["vte", "falls", "pressure"])
    @pytest.mark.parametrize("probability,expected", [
        (0.04, RiskLevel.HIGH),
        (0.0399, RiskLevel.MODERATE),
        (0.02, RiskLevel.MODERATE),
        (0.0199, RiskLevel.LOW),
    ])
    def test_other_outcome_bands(self, outcome, probability, expected):
        """VTE, falls and pressure: moderate at 2%, high at 4%."""
        assert band_probability(outcome, probability) == expected

    def test_bands_accept_enum(self):
        """Outcome enum members work as keys."""
        assert band_probability(Outcome.FALLS, 0.5) == RiskLevel.HIGH


class TestOutcomeKeys:
    """Tests for outcome key handling."""

    def test_parse_known_keys(self):
        """String keys resolve to enum members, case-insensitively."""
        assert Outcome.parse("vte") is Outcome.VTE
        assert Outcome.parse("Falls") is Outcome.FALLS

    def test_unknown_key_raises(self):
        """An unknown outcome key is a programming error."""
        with pytest.raises(ValueError, match="Unknown outcome"):
            Outcome.parse("delirium")

    def test_model_for_unknown_key(self):
        """Looking up an unknown outcome raises ValueError."""
        with pytest.raises(ValueError):
            DEFAULT_CALIBRATION.model_for("mortality")


class TestCalibrationTable:
    """Tests for the calibration constants."""

    @pytest.mark.parametrize("outcome,intercept", [
        (Outcome.DECONDITIONING, -2.0),
        (Outcome.VTE, -4.18),
        (Outcome.FALLS, -5.8),
        (Outcome.PRESSURE, -3.66),
    ])
    def test_intercepts(self, outcome, intercept):
        """Intercepts are fixed constants."""
        assert DEFAULT_CALIBRATION.model_for(outcome).intercept == intercept

    @pytest.mark.parametrize("outcome,multipliers", [
        (Outcome.DECONDITIONING, (5.6, 3.0, 1.8, 1.3, 1.0)),
        (Outcome.VTE, (3.6, 2.0, 1.5, 1.2, 1.0)),
        (Outcome.FALLS, (25.0, 15.0, 8.0, 3.0, 1.0)),
        (Outcome.PRESSURE, (4.0, 2.5, 1.6, 1.2, 1.0)),
    ])
    def test_mobility_weights_are_log_odds(self, outcome, multipliers):
        """Mobility weights are natural logs of the odds multipliers."""
        model = DEFAULT_CALIBRATION.model_for(outcome)
        levels = ("bedbound", "chair_bound", "standing_assist", "walking_assist", "independent")
        for level, multiplier in zip(levels, multipliers):
            assert model.mobility_weight(level) == pytest.approx(math.log(multiplier))

    def test_specific_weight_overrides_shared(self):
        """Falls uses its own stroke weight instead of the shared one."""
        falls = DEFAULT_CALIBRATION.model_for(Outcome.FALLS)
        assert falls.weight_for("stroke") == pytest.approx(math.log(1.6))
        assert DEFAULT_CALIBRATION.shared_weights["stroke"] == pytest.approx(math.log(1.8))

    def test_pressure_diabetes_weight(self):
        """Pressure uses the specific diabetes weight."""
        pressure = DEFAULT_CALIBRATION.model_for(Outcome.PRESSURE)
        assert pressure.weight_for("diabetes") == pytest.approx(math.log(1.3))

    def test_falls_interactions(self):
        """Only bedbound/chair_bound with delirium carry an interaction."""
        falls = DEFAULT_CALIBRATION.model_for(Outcome.FALLS)
        assert falls.interaction_weight("bedbound", "delirium_dementia") == pytest.approx(math.log(1.8))
        assert falls.interaction_weight("chair_bound", "delirium_dementia") == pytest.approx(math.log(1.5))
        assert falls.interaction_weight("standing_assist", "delirium_dementia") == 0.0
        assert falls.interaction_weight("bedbound", "mild_impairment") == 0.0

    def test_falls_excludes_care_setting(self):
        """Falls never scores ICU or stepdown."""
        falls = DEFAULT_CALIBRATION.model_for(Outcome.FALLS)
        assert "icu" not in falls.evaluation_order
        assert "stepdown" not in falls.evaluation_order

    def test_table_is_read_only(self):
        """The table and its mappings cannot be mutated."""
        with pytest.raises(dataclasses.FrozenInstanceError):
            DEFAULT_CALIBRATION.probability_cap = 0.99
        with pytest.raises(TypeError):
            DEFAULT_CALIBRATION.shared_weights["icu"] = 0.0
        model = DEFAULT_CALIBRATION.model_for(Outcome.VTE)
        with pytest.raises(TypeError):
            model.specific_weights["history_vte"] = 0.0

    def test_model_without_weight_for_tag_rejected(self):
        """Every evaluated tag must resolve to a weight at construction."""
        base = DEFAULT_CALIBRATION.model_for(Outcome.VTE)
        with pytest.raises(ValueError, match="no weight"):
            OutcomeModel(
                outcome=Outcome.VTE,
                intercept=base.intercept,
                mobility_weights=base.mobility_weights,
                shared_factors=base.shared_factors,
                specific_weights=base.specific_weights,
                evaluation_order=base.evaluation_order + ("moisture",),
                bands=RiskBands(moderate=0.02, high=0.04),
                shared_weights=base.shared_weights,
            )

    def test_to_dict_is_json_serializable(self):
        """The table can be exposed over HTTP."""
        data = DEFAULT_CALIBRATION.to_dict()
        json.dumps(data)
        assert set(data["outcomes"]) == {"deconditioning", "vte", "falls", "pressure"}
        assert data["probability_cap"] == 0.95
        assert "bedbound+delirium_dementia" in data["outcomes"]["falls"]["interactions"]


class TestProbabilityHelpers:
    """Tests for logistic, odds and rounding helpers."""

    def test_logistic_midpoint(self):
        """logistic(0) is one half."""
        assert logistic(0.0) == 0.5

    def test_probability_capped(self):
        """Probabilities are capped at 0.95."""
        model = DEFAULT_CALIBRATION.model_for(Outcome.DECONDITIONING)
        assert probability_from_score(model, 50.0) == 0.95

    def test_odds_floor_at_certainty(self):
        """p = 1 uses the 1e-9 floor instead of dividing by zero."""
        assert odds(1.0) == pytest.approx(1e9)

    def test_odds_ratio_identity(self):
        """Equal probabilities give an odds ratio of one."""
        assert odds_ratio(0.3, 0.3) == pytest.approx(1.0)

    def test_odds_ratio_zero_reference(self):
        """A zero reference probability does not raise."""
        assert odds_ratio(0.5, 0.0) == pytest.approx(1e9)

    @pytest.mark.parametrize("value,digits,expected", [
        (2.5, 0, 3.0),
        (0.125, 2, 0.13),
        (38.61, 1, 38.6),
        (-0.5, 0, 0.0),
    ])
    def test_round_half_up(self, value, digits, expected):
        """Ties round towards positive infinity."""
        assert round_half_up(value, digits) == expected


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
