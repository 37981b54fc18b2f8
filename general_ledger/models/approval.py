"""
Approval workflow models.

ApprovalWorkflow and ApprovalStep are configuration. An
ApprovalRequest is one workflow applied to one document, and
ApprovalHistory is its append-only action log. The engine
never looks inside the document; it only sees the type, id,
amount and currency it was handed.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Text, DateTime, Integer, Numeric, Boolean, ForeignKey, JSON,
    UniqueConstraint, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from general_ledger.models.base import Base, utcnow
from general_ledger.models.enums import (
    ApprovalRuleType,
    ApproverType,
    EscalationAction,
    ApprovalStatus,
    ApprovalAction,
    OPEN_APPROVAL_STATUSES,
    TERMINAL_APPROVAL_STATUSES,
)


class ApprovalWorkflow(Base):
    __tablename__ = "approval_workflows"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_approval_workflow_code"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(String(64))
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    document_type: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True
    )
    rule_type: Mapped[ApprovalRuleType] = mapped_column(
        SAEnum(ApprovalRuleType, name="approval_rule_type_enum"),
        nullable=False,
        default=ApprovalRuleType.SEQUENTIAL,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_amount: Mapped[Decimal | None] = mapped_column(Numeric(19, 4))
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(19, 4))
    currency_code: Mapped[str | None] = mapped_column(String(3))
    allow_recall: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    allow_delegation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    require_comment_on_reject: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    expiry_hours: Mapped[int | None] = mapped_column(Integer)
    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    steps: Mapped[list["ApprovalStep"]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="ApprovalStep.step_order",
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.code} ({self.rule_type.value})>"


class ApprovalStep(Base):
    __tablename__ = "approval_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_approval_step"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    workflow_id: Mapped[int] = mapped_column(
        ForeignKey("approval_workflows.id"), nullable=False, index=True
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    approver_type: Mapped[ApproverType] = mapped_column(
        SAEnum(ApproverType, name="approver_type_enum"),
        nullable=False,
        default=ApproverType.USER,
    )
    approver_user_ids: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )
    approver_roles: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )
    dynamic_approver_field: Mapped[str | None] = mapped_column(String(100))
    required_approvals: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    min_amount: Mapped[Decimal | None] = mapped_column(Numeric(19, 4))
    max_amount: Mapped[Decimal | None] = mapped_column(Numeric(19, 4))
    escalation_hours: Mapped[int | None] = mapped_column(Integer)
    escalation_action: Mapped[EscalationAction] = mapped_column(
        SAEnum(EscalationAction, name="escalation_action_enum"),
        nullable=False,
        default=EscalationAction.NOTIFY,
    )
    escalation_recipient_ids: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    workflow: Mapped["ApprovalWorkflow"] = relationship(back_populates="steps")

    def applies_to(self, amount: Decimal) -> bool:
        """True when amount falls inside [min_amount, max_amount)."""
        if self.min_amount is not None and amount < self.min_amount:
            return False
        if self.max_amount is not None and amount >= self.max_amount:
            return False
        return True


class ApprovalRequest(Base):
    """
    One workflow instance for one document.

    step_orders lists the applicable step orders for this
    document's amount. resolved_approvers and step_approvals
    are keyed by str(step_order); both are reassigned (never
    mutated in place) so the JSON change is detected.
    """

    __tablename__ = "approval_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(String(64))
    workflow_id: Mapped[int | None] = mapped_column(
        ForeignKey("approval_workflows.id"), nullable=True
    )

    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    document_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    document_number: Mapped[str | None] = mapped_column(String(100))
    document_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4), nullable=False
    )
    document_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[ApprovalStatus] = mapped_column(
        SAEnum(ApprovalStatus, name="approval_status_enum"),
        nullable=False,
        default=ApprovalStatus.PENDING,
        index=True,
    )
    current_step_order: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    total_steps: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    step_orders: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list
    )
    resolved_approvers: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=dict
    )
    step_approvals: Mapped[dict] = mapped_column(
        JSON, nullable=False, default=dict
    )
    # Approvals needed to complete the current step, fixed on entry
    current_quorum: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    step_started_at: Mapped[datetime | None] = mapped_column(DateTime)
    escalated_step_order: Mapped[int | None] = mapped_column(Integer)
    context: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    submitted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    submitter_notes: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_by: Mapped[str | None] = mapped_column(String(64))

    delegated_to: Mapped[str | None] = mapped_column(String(64))
    delegated_by: Mapped[str | None] = mapped_column(String(64))
    delegated_at: Mapped[datetime | None] = mapped_column(DateTime)
    delegation_reason: Mapped[str | None] = mapped_column(String(255))

    due_at: Mapped[datetime | None] = mapped_column(DateTime)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    workflow: Mapped["ApprovalWorkflow | None"] = relationship()
    history: Mapped[list["ApprovalHistory"]] = relationship(
        back_populates="request",
        order_by="ApprovalHistory.id",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_APPROVAL_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    def approvers_for(self, step_order: int) -> list[str]:
        return list(self.resolved_approvers.get(str(step_order), []))

    def approvals_for(self, step_order: int) -> list[str]:
        return list(self.step_approvals.get(str(step_order), []))

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.document_type}:{self.document_id} "
            f"step {self.current_step_order}/{self.total_steps} "
            f"({self.status.value})>"
        )


class ApprovalHistory(Base):
    """Append-only record of one action on an approval request."""

    __tablename__ = "approval_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    request_id: Mapped[int] = mapped_column(
        ForeignKey("approval_requests.id"), nullable=False, index=True
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[ApprovalAction] = mapped_column(
        SAEnum(ApprovalAction, name="approval_action_enum"),
        nullable=False,
    )
    previous_status: Mapped[ApprovalStatus | None] = mapped_column(
        SAEnum(ApprovalStatus, name="approval_status_enum")
    )
    new_status: Mapped[ApprovalStatus] = mapped_column(
        SAEnum(ApprovalStatus, name="approval_status_enum"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text)
    delegated_to: Mapped[str | None] = mapped_column(String(64))
    previous_state: Mapped[dict | None] = mapped_column(JSON)
    new_state: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    request: Mapped["ApprovalRequest"] = relationship(back_populates="history")
