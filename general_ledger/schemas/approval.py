"""Pydantic schemas for approval workflows and requests."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from general_ledger.models.enums import (
    ApprovalAction,
    ApprovalRuleType,
    ApprovalStatus,
    ApproverType,
    EscalationAction,
)


# --- Request Schemas ---

class ApprovalStepCreate(BaseModel):
    step_order: int = Field(ge=1)
    name: str = Field(min_length=1, max_length=100)
    approver_type: ApproverType = ApproverType.USER
    approver_user_ids: list[str] = Field(default_factory=list)
    approver_roles: list[str] = Field(default_factory=list)
    dynamic_approver_field: str | None = Field(default=None, max_length=100)
    required_approvals: int = Field(default=1, ge=1)
    min_amount: Decimal | None = Field(default=None, ge=0)
    max_amount: Decimal | None = None
    escalation_hours: int | None = Field(default=None, ge=1)
    escalation_action: EscalationAction = EscalationAction.NOTIFY
    escalation_recipient_ids: list[str] = Field(default_factory=list)
    is_active: bool = True

    @model_validator(mode="after")
    def check_approver_source(self):
        if self.approver_type == ApproverType.USER and not self.approver_user_ids:
            raise ValueError("USER steps need approver_user_ids")
        if self.approver_type == ApproverType.ROLE and not self.approver_roles:
            raise ValueError("ROLE steps need approver_roles")
        if self.approver_type == ApproverType.DYNAMIC and not self.dynamic_approver_field:
            raise ValueError("DYNAMIC steps need dynamic_approver_field")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.max_amount <= self.min_amount
        ):
            raise ValueError("max_amount must be greater than min_amount")
        return self


class ApprovalWorkflowCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    document_type: str = Field(min_length=1, max_length=50)
    rule_type: ApprovalRuleType = ApprovalRuleType.SEQUENTIAL
    is_active: bool = True
    priority: int = Field(default=0, ge=0)
    min_amount: Decimal | None = Field(default=None, ge=0)
    max_amount: Decimal | None = None
    currency_code: str | None = Field(default=None, min_length=3, max_length=3)
    allow_recall: bool = True
    allow_delegation: bool = False
    require_comment_on_reject: bool = True
    expiry_hours: int | None = Field(default=None, ge=1)
    steps: list[ApprovalStepCreate] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def unique_step_orders(cls, v: list[ApprovalStepCreate]):
        orders = [step.step_order for step in v]
        if len(orders) != len(set(orders)):
            raise ValueError("step_order values must be unique")
        return v


class ApproveRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)
    step_order: int | None = Field(default=None, ge=1)
    expected_version: int | None = None


class RejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)
    expected_version: int | None = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("reason is required")
        return v


class DelegateRequest(BaseModel):
    delegate_to: str = Field(min_length=1, max_length=64)
    reason: str | None = Field(default=None, max_length=255)
    expected_version: int | None = None


class RecallRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)
    expected_version: int | None = None


class CommentRequest(BaseModel):
    comments: str = Field(min_length=1, max_length=1000)


class SweepRequest(BaseModel):
    now: datetime | None = None


# --- Response Schemas ---

class ApprovalStepResponse(BaseModel):
    id: int
    step_order: int
    name: str
    approver_type: ApproverType
    approver_user_ids: list[str]
    approver_roles: list[str]
    dynamic_approver_field: str | None
    required_approvals: int
    min_amount: Decimal | None
    max_amount: Decimal | None
    escalation_hours: int | None
    escalation_action: EscalationAction
    escalation_recipient_ids: list[str]
    is_active: bool

    model_config = {"from_attributes": True}


class ApprovalWorkflowResponse(BaseModel):
    id: int
    tenant_id: str
    code: str
    name: str
    description: str | None
    document_type: str
    rule_type: ApprovalRuleType
    is_active: bool
    priority: int
    min_amount: Decimal | None
    max_amount: Decimal | None
    currency_code: str | None
    allow_recall: bool
    allow_delegation: bool
    require_comment_on_reject: bool
    expiry_hours: int | None
    steps: list[ApprovalStepResponse]

    model_config = {"from_attributes": True}


class ApprovalRequestResponse(BaseModel):
    id: int
    tenant_id: str
    workflow_id: int | None
    document_type: str
    document_id: str
    document_number: str | None
    document_amount: Decimal
    document_currency: str
    status: ApprovalStatus
    current_step_order: int
    total_steps: int
    step_orders: list[int]
    resolved_approvers: dict[str, list[str]]
    step_approvals: dict[str, list[str]]
    current_quorum: int
    submitted_by: str
    submitted_at: datetime
    completed_at: datetime | None
    completed_by: str | None
    delegated_to: str | None
    delegated_by: str | None
    due_at: datetime | None
    expires_at: datetime | None
    version: int

    model_config = {"from_attributes": True}


class ApprovalHistoryResponse(BaseModel):
    id: int
    request_id: int
    step_order: int
    action: ApprovalAction
    previous_status: ApprovalStatus | None
    new_status: ApprovalStatus
    actor_id: str
    comments: str | None
    delegated_to: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ApprovalRequestPage(BaseModel):
    items: list[ApprovalRequestResponse]
    total: int
    page: int
    page_size: int


class ApprovalSummaryResponse(BaseModel):
    pending_count: int
    approved_today: int
    rejected_today: int
    overdue_count: int


class SweepResponse(BaseModel):
    expired: list[int]
    escalated: list[int]
    auto_approved: list[int]
    auto_rejected: list[int]
    notified: list[int]
