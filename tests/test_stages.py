"""Tests for the lifecycle stage table."""

import pytest

from kabadi.schemas import Partner, Stage, StepState
from kabadi.services.stages import (
    STAGE_ORDER, build_steps, classify, is_regression, stage_index,
)


def test_stage_order_is_fixed():
    """The public lifecycle order."""
    assert [s.value for s in STAGE_ORDER] == [
        "pending", "assigned", "on_the_way", "arrived", "verifying", "completed",
    ]
    assert list(Stage) == list(STAGE_ORDER)


def test_stage_index():
    assert stage_index(Stage.PENDING) == 0
    assert stage_index(Stage.ARRIVED) == 3
    assert stage_index(Stage.COMPLETED) == 5


@pytest.mark.parametrize("current", list(Stage))
def test_classify_against_every_current_stage(current):
    """Earlier steps completed, the current one current, later ones upcoming."""
    pos = stage_index(current)
    for stage in Stage:
        expected = (
            StepState.COMPLETED if stage_index(stage) < pos
            else StepState.CURRENT if stage is current
            else StepState.UPCOMING
        )
        assert classify(stage, current) is expected


def test_is_regression():
    assert is_regression(Stage.ARRIVED, Stage.ASSIGNED) is True
    assert is_regression(Stage.ARRIVED, Stage.ARRIVED) is False
    assert is_regression(Stage.ARRIVED, Stage.VERIFYING) is False


def test_build_steps_copy_and_partner_title():
    """Assigned step names the dealer once known."""
    steps = build_steps(Stage.ON_THE_WAY, Partner(name="Ravi", phone="+91 98000 00001"))
    assert len(steps) == 6
    assert steps[0].title == "Order Submitted"
    assert steps[1].title == "Assigned to Dealer (Ravi)"
    assert steps[2].classification is StepState.CURRENT
    assert "OTP" in steps[4].description


def test_build_steps_without_partner():
    steps = build_steps(Stage.ASSIGNED)
    assert steps[1].title == "Assigned to Dealer"
    assert steps[1].classification is StepState.CURRENT
