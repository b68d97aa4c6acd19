"""
Module: content_kernel.models.workflow
Responsibility: ORM persistence for registered approval workflow definitions.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Definitions and their stages are immutable once registered.  A
      revised chain is a new definition row with version + 1.
    - UNIQUE(campaign_id, version) and UNIQUE(workflow_id, stage_number).

Failure modes:
    - ImmutabilityViolationError on ORM update/delete.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from content_kernel.db.base import Base, UUIDString
from content_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from content_kernel.domain.workflow import ApprovalWorkflowDefinition


class WorkflowDefinitionModel(Base):
    """Registered workflow definition (one immutable chain of stages)."""

    __tablename__ = "workflow_definitions"

    __table_args__ = (
        UniqueConstraint(
            "campaign_id", "version",
            name="uq_workflow_definitions_campaign_version",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    campaign_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    definition_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    stages: Mapped[list["WorkflowStageModel"]] = relationship(
        "WorkflowStageModel",
        primaryjoin="WorkflowDefinitionModel.workflow_id == WorkflowStageModel.workflow_id",
        order_by="WorkflowStageModel.stage_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowDefinition {self.workflow_id} "
            f"{self.campaign_id}/{self.name} v{self.version}>"
        )

    def to_dto(self) -> ApprovalWorkflowDefinition:
        """Convert ORM model to frozen domain DTO."""
        from content_kernel.domain.workflow import (
            ApprovalStage,
            ApprovalWorkflowDefinition,
        )

        return ApprovalWorkflowDefinition(
            campaign_id=self.campaign_id,
            name=self.name,
            stages=tuple(
                ApprovalStage(
                    stage_number=s.stage_number,
                    approver_role=s.approver_role,
                    approver_id=s.approver_id,
                    required=s.required,
                )
                for s in self.stages
            ),
            workflow_id=self.workflow_id,
            version=self.version,
            definition_hash=self.definition_hash,
            created_at=self.created_at,
        )


class WorkflowStageModel(Base):
    """One stage row of a registered workflow definition."""

    __tablename__ = "workflow_stages"

    __table_args__ = (
        UniqueConstraint(
            "workflow_id", "stage_number",
            name="uq_workflow_stages_number",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_definitions.workflow_id"),
        nullable=False,
    )
    stage_number: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<WorkflowStage {self.workflow_id} #{self.stage_number}>"


def _reject_mutation(entity_type: str, entity_id: str, verb: str):
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=f"Workflow definitions are immutable -- cannot {verb}",
    )


@event.listens_for(WorkflowDefinitionModel, "before_update")
def prevent_definition_update(mapper, connection, target):
    _reject_mutation("WorkflowDefinition", str(target.workflow_id), "modify")


@event.listens_for(WorkflowDefinitionModel, "before_delete")
def prevent_definition_delete(mapper, connection, target):
    _reject_mutation("WorkflowDefinition", str(target.workflow_id), "delete")


@event.listens_for(WorkflowStageModel, "before_update")
def prevent_stage_update(mapper, connection, target):
    _reject_mutation(
        "WorkflowStage", f"{target.workflow_id}#{target.stage_number}", "modify",
    )


@event.listens_for(WorkflowStageModel, "before_delete")
def prevent_stage_delete(mapper, connection, target):
    _reject_mutation(
        "WorkflowStage", f"{target.workflow_id}#{target.stage_number}", "delete",
    )
