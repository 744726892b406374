"""Deal stage transition rules.

The single source of truth for which stage changes are legal. Every
mutator that touches ``Deal.stage`` goes through validate_stage_transition.

Policy: from any non-terminal stage a deal may move to the next stage in
STAGE_ORDER, or exit to DECLINED / WITHDRAWN. No skipping, no moving
backwards, nothing out of a terminal stage.
"""

from __future__ import annotations

from src.dealflow.core.errors import InvalidStageTransitionError
from src.dealflow.workflow.stages import (
    EXIT_STAGES,
    STAGE_ORDER,
    TERMINAL_STAGES,
    DealStage,
)


def _build_transitions() -> dict[DealStage, tuple[DealStage, ...]]:
    transitions: dict[DealStage, tuple[DealStage, ...]] = {}
    for stage in DealStage:
        if stage in TERMINAL_STAGES:
            transitions[stage] = ()
            continue
        index = STAGE_ORDER.index(stage)
        transitions[stage] = (STAGE_ORDER[index + 1], *EXIT_STAGES)
    return transitions


# Maps each stage to the stages it can transition TO, forward stage first.
VALID_TRANSITIONS: dict[DealStage, tuple[DealStage, ...]] = _build_transitions()


def is_terminal_stage(stage: DealStage) -> bool:
    return stage in TERMINAL_STAGES


def valid_next_stages(stage: DealStage) -> list[DealStage]:
    """Stages a deal currently in ``stage`` may legally move to."""
    return list(VALID_TRANSITIONS[stage])


def forward_stage(stage: DealStage) -> DealStage | None:
    """The next stage in pipeline order, or None for terminal stages."""
    nexts = VALID_TRANSITIONS[stage]
    return nexts[0] if nexts else None


def can_transition(from_stage: DealStage, to_stage: DealStage) -> bool:
    return to_stage in VALID_TRANSITIONS[from_stage]


def validate_stage_transition(from_stage: DealStage, to_stage: DealStage) -> None:
    """Validate that a deal stage transition is allowed.

    Args:
        from_stage: Current deal stage.
        to_stage: Requested deal stage.

    Raises:
        InvalidStageTransitionError: If ``to_stage`` is not a valid next
            stage of ``from_stage``. The error names both stages.
    """
    if not can_transition(from_stage, to_stage):
        raise InvalidStageTransitionError(
            from_stage.value,
            to_stage.value,
            [s.value for s in VALID_TRANSITIONS[from_stage]],
        )
