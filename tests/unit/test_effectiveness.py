"""Unit tests for outcome effectiveness scoring"""

from __future__ import annotations

import pytest

from celeste.interventions.effectiveness import Outcome, calculate_effectiveness


def test_full_outcome_scores_one():
    outcome = Outcome(action_taken=True, revenue_impact=500, pattern_broken=True, breakthrough=True)
    assert calculate_effectiveness(outcome) == pytest.approx(1.0)


def test_empty_outcome_scores_zero():
    assert calculate_effectiveness(Outcome()) == 0.0


@pytest.mark.parametrize(
    "fields,expected",
    [
        ({"action_taken": True}, 0.3),
        ({"revenue_impact": 10}, 0.3),
        ({"revenue_impact": -10}, 0.0),
        ({"pattern_broken": True}, 0.2),
        ({"breakthrough": True}, 0.2),
        ({"action_taken": True, "pattern_broken": True}, 0.5),
    ],
)
def test_weights(fields, expected):
    assert calculate_effectiveness(Outcome(**fields)) == pytest.approx(expected)
