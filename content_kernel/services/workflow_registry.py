"""
WorkflowRegistry -- persistence of approval workflow definitions.

Responsibility:
    Registers immutable, versioned workflow definitions per campaign and
    resolves them by id for submission and transition planning.

Architecture position:
    Kernel > Services.  May import from domain/, models/, utils/.

Invariants enforced:
    - Definitions are never edited.  A revised chain registers a new
      definition with the next campaign version from the locked
      ``workflow_definition:<campaign>`` counter.
    - Idempotent registration: a definition whose hash equals the
      campaign's latest one returns that existing definition.

Failure modes:
    - UnknownWorkflowError when a workflow_id has no definition.
    - MalformedWorkflowError (raised by the domain type) on bad stages.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from content_kernel.domain.clock import Clock, SystemClock
from content_kernel.domain.workflow import ApprovalWorkflowDefinition
from content_kernel.exceptions import UnknownWorkflowError
from content_kernel.logging_config import get_logger
from content_kernel.models.workflow import WorkflowDefinitionModel, WorkflowStageModel
from content_kernel.services.sequence_service import SequenceService
from content_kernel.utils.hashing import hash_workflow_definition

logger = get_logger("services.workflow_registry")


class WorkflowRegistry:
    """Stores and resolves workflow definitions."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def register(
        self, definition: ApprovalWorkflowDefinition,
    ) -> ApprovalWorkflowDefinition:
        """Persist ``definition`` as the campaign's next version.

        Any ``workflow_id``/``version`` on the incoming definition is
        ignored; both are assigned here.
        """
        digest = definition.definition_hash or hash_workflow_definition(definition)

        savepoint = self._session.begin_nested()
        # The counter row lock serializes registrations for one campaign.
        version = self._sequences.next_value(
            SequenceService.workflow_definition(definition.campaign_id)
        )
        latest = self._latest_model(definition.campaign_id)
        if latest is not None and latest.definition_hash == digest:
            savepoint.rollback()
            logger.debug(
                "workflow_registration_unchanged",
                extra={
                    "workflow_id": str(latest.workflow_id),
                    "campaign_id": definition.campaign_id,
                },
            )
            return latest.to_dto()

        workflow_id = uuid4()
        model = WorkflowDefinitionModel(
            workflow_id=workflow_id,
            campaign_id=definition.campaign_id,
            name=definition.name,
            version=version,
            definition_hash=digest,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()
        for stage in definition.stages:
            self._session.add(WorkflowStageModel(
                workflow_id=workflow_id,
                stage_number=stage.stage_number,
                approver_role=stage.approver_role,
                approver_id=stage.approver_id,
                required=stage.required,
            ))
        self._session.flush()
        savepoint.commit()

        logger.info(
            "workflow_registered",
            extra={
                "workflow_id": str(workflow_id),
                "campaign_id": definition.campaign_id,
                "workflow_name": definition.name,
                "version": version,
                "stage_count": definition.stage_count,
            },
        )
        return self.get(workflow_id)

    def get(self, workflow_id: UUID) -> ApprovalWorkflowDefinition:
        model = self._session.execute(
            select(WorkflowDefinitionModel).where(
                WorkflowDefinitionModel.workflow_id == workflow_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise UnknownWorkflowError(str(workflow_id))
        return model.to_dto()

    def latest_for_campaign(
        self, campaign_id: str,
    ) -> ApprovalWorkflowDefinition | None:
        model = self._latest_model(campaign_id)
        return model.to_dto() if model is not None else None

    def list_for_campaign(self, campaign_id: str) -> list[ApprovalWorkflowDefinition]:
        """All definitions for a campaign, oldest version first."""
        models = self._session.execute(
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.campaign_id == campaign_id)
            .order_by(WorkflowDefinitionModel.version)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def _latest_model(self, campaign_id: str) -> WorkflowDefinitionModel | None:
        return self._session.execute(
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.campaign_id == campaign_id)
            .order_by(WorkflowDefinitionModel.version.desc())
            .limit(1)
        ).scalar_one_or_none()
