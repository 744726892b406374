"""Pipeline stage taxonomy for funding applications.

Static configuration only: the stage identifiers in progression order, the
terminal exits, and the display metadata the admin and client dashboards
render for each stage.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class DealStage(str, Enum):
    """Position of a deal in the qualification-to-funding pipeline."""

    DRAFT = "draft"
    QUALIFIED = "qualified"
    DOCUMENTS_REQUESTED = "documents_requested"
    DOCUMENTS_IN_REVIEW = "documents_in_review"
    DUE_DILIGENCE = "due_diligence"
    TERM_SHEET = "term_sheet"
    NEGOTIATION = "negotiation"
    CLOSING = "closing"
    FUNDED = "funded"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"


# Forward progression order. DECLINED and WITHDRAWN sit outside it.
STAGE_ORDER: list[DealStage] = [
    DealStage.DRAFT,
    DealStage.QUALIFIED,
    DealStage.DOCUMENTS_REQUESTED,
    DealStage.DOCUMENTS_IN_REVIEW,
    DealStage.DUE_DILIGENCE,
    DealStage.TERM_SHEET,
    DealStage.NEGOTIATION,
    DealStage.CLOSING,
    DealStage.FUNDED,
]

TERMINAL_STAGES: frozenset[DealStage] = frozenset(
    {DealStage.FUNDED, DealStage.DECLINED, DealStage.WITHDRAWN}
)

# Reachable from every non-terminal stage.
EXIT_STAGES: tuple[DealStage, ...] = (DealStage.DECLINED, DealStage.WITHDRAWN)


class StageConfig(BaseModel):
    """Display metadata for a single stage."""

    label: str
    description: str
    owner: str = Field(description="Who acts next: client, admin or both")
    color: str
    bg_color: str
    client_actions: list[str] = Field(default_factory=list)
    admin_actions: list[str] = Field(default_factory=list)


STAGE_CONFIG: dict[DealStage, StageConfig] = {
    DealStage.DRAFT: StageConfig(
        label="Draft",
        description="Application in progress",
        owner="client",
        color="text-gray-600",
        bg_color="bg-gray-100",
        client_actions=["Complete your funding application"],
    ),
    DealStage.QUALIFIED: StageConfig(
        label="Submitted",
        description="Application submitted, awaiting document request",
        owner="admin",
        color="text-blue-600",
        bg_color="bg-blue-100",
        admin_actions=["Review application", "Request documents when ready"],
    ),
    DealStage.DOCUMENTS_REQUESTED: StageConfig(
        label="Documents Requested",
        description="Additional documents needed",
        owner="client",
        color="text-amber-600",
        bg_color="bg-amber-100",
        client_actions=[
            "Upload financial statements",
            "Provide bank statements",
            "Submit loan tape data",
            "Upload performance history",
        ],
        admin_actions=["Monitor document uploads", "Review submitted documents"],
    ),
    DealStage.DOCUMENTS_IN_REVIEW: StageConfig(
        label="Documents in Review",
        description="Documents being reviewed",
        owner="admin",
        color="text-purple-600",
        bg_color="bg-purple-100",
        client_actions=["Respond to any follow-up questions"],
        admin_actions=[
            "Review all submitted documents",
            "Approve or reject documents",
            "Request additional information if needed",
        ],
    ),
    DealStage.DUE_DILIGENCE: StageConfig(
        label="Due Diligence",
        description="Detailed review in progress",
        owner="admin",
        color="text-indigo-600",
        bg_color="bg-indigo-100",
        client_actions=[
            "Upload loan agreement samples",
            "Provide insurance certificates",
            "Be available for follow-up calls",
        ],
        admin_actions=[
            "Conduct thorough due diligence",
            "Schedule calls as needed",
            "Prepare term sheet",
        ],
    ),
    DealStage.TERM_SHEET: StageConfig(
        label="Term Sheet",
        description="Terms being negotiated",
        owner="both",
        color="text-cyan-600",
        bg_color="bg-cyan-100",
        client_actions=["Review proposed terms", "Upload signed term sheet"],
        admin_actions=[
            "Issue term sheet",
            "Address client questions",
            "Negotiate terms as needed",
        ],
    ),
    DealStage.NEGOTIATION: StageConfig(
        label="Negotiation",
        description="Final terms being finalized",
        owner="both",
        color="text-orange-600",
        bg_color="bg-orange-100",
        client_actions=["Review final documents", "Coordinate with legal counsel"],
        admin_actions=["Finalize documentation", "Coordinate legal review"],
    ),
    DealStage.CLOSING: StageConfig(
        label="Closing",
        description="Deal closing in progress",
        owner="both",
        color="text-emerald-600",
        bg_color="bg-emerald-100",
        client_actions=[
            "Execute final agreements",
            "Provide board resolutions",
            "Complete closing checklist",
        ],
        admin_actions=[
            "Coordinate closing",
            "Verify all documents",
            "Prepare for funding",
        ],
    ),
    DealStage.FUNDED: StageConfig(
        label="Funded",
        description="Deal successfully funded",
        owner="admin",
        color="text-green-600",
        bg_color="bg-green-100",
    ),
    DealStage.DECLINED: StageConfig(
        label="Declined",
        description="Application was not approved",
        owner="admin",
        color="text-red-600",
        bg_color="bg-red-100",
    ),
    DealStage.WITHDRAWN: StageConfig(
        label="Withdrawn",
        description="Application withdrawn by applicant",
        owner="client",
        color="text-gray-500",
        bg_color="bg-gray-100",
    ),
}


def stage_label(stage: DealStage) -> str:
    return STAGE_CONFIG[stage].label


def stage_action_items(stage: DealStage, is_admin: bool) -> list[str]:
    """Action items for the admin or client side of a stage."""
    config = STAGE_CONFIG[stage]
    return list(config.admin_actions if is_admin else config.client_actions)


def stage_progress(stage: DealStage) -> int:
    """Percentage progress through the ordered pipeline (0-100).

    Declined and withdrawn deals report 0.
    """
    if stage not in STAGE_ORDER:
        return 0
    index = STAGE_ORDER.index(stage)
    return round(index / (len(STAGE_ORDER) - 1) * 100)


def transition_message(from_stage: DealStage, to_stage: DealStage) -> str:
    """Owner-facing notification body for a stage change."""
    if to_stage == DealStage.DECLINED:
        return "Your application has been declined."
    if to_stage == DealStage.WITHDRAWN:
        return "Your application has been withdrawn."
    if to_stage == DealStage.FUNDED:
        return "Congratulations! Your funding has been completed."
    return f"Your application has moved to {stage_label(to_stage)}."


def stage_change_title(to_stage: DealStage) -> str:
    """Owner-facing notification title for a stage change."""
    if to_stage == DealStage.FUNDED:
        return "Funding Complete!"
    if to_stage == DealStage.DECLINED:
        return "Application Update"
    return f"Stage Updated: {stage_label(to_stage)}"
