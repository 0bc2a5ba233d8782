"""
Lifecycle stage table — fixed order, display copy, and step classification.

The six stages and their order are a public contract:
  pending → assigned → on_the_way → arrived → verifying → completed

Order is taken from STAGE_ORDER only, never from a dynamic structure.
"""

from __future__ import annotations
from dataclasses import dataclass

from kabadi.schemas import Partner, Stage, StepState, StepView


@dataclass(frozen=True)
class StageInfo:
    stage: Stage
    title: str
    description: str


STAGE_TABLE: tuple[StageInfo, ...] = (
    StageInfo(
        Stage.PENDING,
        "Order Submitted",
        "Your scrap pickup request has been submitted to Kabadi Man",
    ),
    StageInfo(
        Stage.ASSIGNED,
        "Assigned to Dealer",
        "Your order is assigned to a verified scrap dealer",
    ),
    StageInfo(
        Stage.ON_THE_WAY,
        "On the Way",
        "Kabadi Man is on the way! Please wait until the scrapper comes to your doorstep.",
    ),
    StageInfo(
        Stage.ARRIVED,
        "Arrived",
        "Scrapper has reached your location",
    ),
    StageInfo(
        Stage.VERIFYING,
        "OTP Verification",
        "Share this OTP with the scrapper to verify pickup",
    ),
    StageInfo(
        Stage.COMPLETED,
        "Completed",
        "Pickup completed! Thank you for recycling with Kabadi Man",
    ),
)

STAGE_ORDER: tuple[Stage, ...] = tuple(info.stage for info in STAGE_TABLE)
_STAGE_INDEX: dict[Stage, int] = {stage: i for i, stage in enumerate(STAGE_ORDER)}


def stage_index(stage: Stage) -> int:
    """Position of a stage in the lifecycle (0-based)."""
    return _STAGE_INDEX[stage]


def classify(stage: Stage, current: Stage) -> StepState:
    """Classify one step relative to the current stage."""
    step, now = stage_index(stage), stage_index(current)
    if step < now:
        return StepState.COMPLETED
    if step == now:
        return StepState.CURRENT
    return StepState.UPCOMING


def is_regression(current: Stage, incoming: Stage) -> bool:
    return stage_index(incoming) < stage_index(current)


def build_steps(current: Stage, partner: Partner | None = None) -> list[StepView]:
    """
    Re-derive every step view from the current stage.

    Always recomputes all six steps; the whole ordering can shift when a
    status arrives out of order.
    """
    steps = []
    for info in STAGE_TABLE:
        title = info.title
        if info.stage is Stage.ASSIGNED and partner is not None:
            title = f"{title} ({partner.name})"
        steps.append(StepView(
            stage=info.stage,
            classification=classify(info.stage, current),
            title=title,
            description=info.description,
        ))
    return steps
