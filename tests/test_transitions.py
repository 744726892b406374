"""Tests for the stage taxonomy and transition rules.

Covers valid_next_stages for every stage, terminal stages, and the
validate_stage_transition error naming both stages.
"""

from __future__ import annotations

import itertools

import pytest

from src.dealflow.core.errors import InvalidStageTransitionError
from src.dealflow.workflow.stages import (
    STAGE_CONFIG,
    STAGE_ORDER,
    TERMINAL_STAGES,
    DealStage,
    stage_action_items,
    stage_change_title,
    stage_progress,
    transition_message,
)
from src.dealflow.workflow.transitions import (
    can_transition,
    forward_stage,
    is_terminal_stage,
    valid_next_stages,
    validate_stage_transition,
)

NON_TERMINAL = [s for s in DealStage if s not in TERMINAL_STAGES]


class TestValidNextStages:
    """Next-stage sets derived from the pipeline order."""

    @pytest.mark.parametrize("stage", NON_TERMINAL)
    def test_non_terminal_moves_forward_or_exits(self, stage: DealStage) -> None:
        following = STAGE_ORDER[STAGE_ORDER.index(stage) + 1]
        assert set(valid_next_stages(stage)) == {
            following,
            DealStage.DECLINED,
            DealStage.WITHDRAWN,
        }

    @pytest.mark.parametrize("stage", sorted(TERMINAL_STAGES, key=lambda s: s.value))
    def test_terminal_has_no_next_stage(self, stage: DealStage) -> None:
        assert valid_next_stages(stage) == []
        assert is_terminal_stage(stage)
        assert forward_stage(stage) is None

    def test_forward_stage_listed_first(self) -> None:
        assert valid_next_stages(DealStage.DRAFT)[0] == DealStage.QUALIFIED
        assert forward_stage(DealStage.CLOSING) == DealStage.FUNDED

    def test_stage_never_leads_to_itself(self) -> None:
        for stage in DealStage:
            assert stage not in valid_next_stages(stage)

    def test_returned_list_is_a_copy(self) -> None:
        stages = valid_next_stages(DealStage.DRAFT)
        stages.clear()
        assert valid_next_stages(DealStage.DRAFT)


class TestValidateStageTransition:
    """validate_stage_transition over every (from, to) pair."""

    @pytest.mark.parametrize(
        ("from_stage", "to_stage"), list(itertools.product(DealStage, DealStage))
    )
    def test_accepts_exactly_the_valid_next_stages(
        self, from_stage: DealStage, to_stage: DealStage
    ) -> None:
        if to_stage in valid_next_stages(from_stage):
            validate_stage_transition(from_stage, to_stage)
            assert can_transition(from_stage, to_stage)
        else:
            with pytest.raises(InvalidStageTransitionError):
                validate_stage_transition(from_stage, to_stage)
            assert not can_transition(from_stage, to_stage)

    def test_skip_rejected_and_message_names_both_stages(self) -> None:
        with pytest.raises(InvalidStageTransitionError) as exc_info:
            validate_stage_transition(DealStage.QUALIFIED, DealStage.DUE_DILIGENCE)
        message = str(exc_info.value)
        assert "qualified" in message
        assert "due_diligence" in message
        assert exc_info.value.allowed == ["documents_requested", "declined", "withdrawn"]

    def test_terminal_message_mentions_terminal(self) -> None:
        with pytest.raises(InvalidStageTransitionError) as exc_info:
            validate_stage_transition(DealStage.FUNDED, DealStage.DECLINED)
        assert "funded is a terminal stage" in str(exc_info.value)

    def test_backwards_rejected(self) -> None:
        with pytest.raises(InvalidStageTransitionError):
            validate_stage_transition(DealStage.TERM_SHEET, DealStage.DUE_DILIGENCE)

    def test_error_is_a_value_error_with_400(self) -> None:
        with pytest.raises(ValueError) as exc_info:
            validate_stage_transition(DealStage.DRAFT, DealStage.FUNDED)
        assert exc_info.value.status_code == 400


class TestStageMetadata:
    """Display metadata and owner-facing copy."""

    def test_every_stage_configured(self) -> None:
        assert set(STAGE_CONFIG) == set(DealStage)

    def test_progress_runs_zero_to_hundred(self) -> None:
        assert stage_progress(DealStage.DRAFT) == 0
        assert stage_progress(DealStage.FUNDED) == 100
        assert stage_progress(DealStage.DUE_DILIGENCE) == 50
        assert stage_progress(DealStage.DECLINED) == 0

    def test_action_items_split_by_role(self) -> None:
        client_items = stage_action_items(DealStage.DOCUMENTS_REQUESTED, is_admin=False)
        admin_items = stage_action_items(DealStage.DOCUMENTS_REQUESTED, is_admin=True)
        assert "Upload financial statements" in client_items
        assert "Monitor document uploads" in admin_items

    def test_transition_copy(self) -> None:
        assert (
            transition_message(DealStage.DRAFT, DealStage.QUALIFIED)
            == "Your application has moved to Submitted."
        )
        assert transition_message(DealStage.CLOSING, DealStage.FUNDED).startswith(
            "Congratulations!"
        )
        assert stage_change_title(DealStage.FUNDED) == "Funding Complete!"
        assert stage_change_title(DealStage.DECLINED) == "Application Update"
        assert stage_change_title(DealStage.TERM_SHEET) == "Stage Updated: Term Sheet"
