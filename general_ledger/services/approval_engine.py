"""
Approval workflow engine.

Generic over document type: a request is created for a
DocumentRef (type, id, amount, currency) and the engine never
looks at anything else about the document. Callers such as the
PostingService react to the request's status after each call.

Rule evaluation:

- Workflow selection: active workflows for the document type
  whose [min_amount, max_amount) and currency match, lowest
  priority first.
- Applicable steps: active steps whose own [min_amount,
  max_amount) contains the document amount. No workflow or no
  applicable step means the request is created APPROVED.
- Quorum per step: ANY needs one approval; ALL and MATRIX need
  every resolved approver (or required_approvals when that is
  larger than one); SEQUENTIAL and THRESHOLD need
  required_approvals.
- Steps run in step_order. Approvers for the next step are
  resolved only when the current one completes.
- Any rejection ends the request. A resubmitted document gets a
  new request that starts again at the first step.

Every state-changing action writes one ApprovalHistory row and
one audit row in the caller's session.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from general_ledger.config import get_settings
from general_ledger.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from general_ledger.logging_config import get_logger
from general_ledger.models.approval import (
    ApprovalHistory,
    ApprovalRequest,
    ApprovalStep,
    ApprovalWorkflow,
)
from general_ledger.models.base import utcnow
from general_ledger.models.enums import (
    OPEN_APPROVAL_STATUSES,
    ApprovalAction,
    ApprovalRuleType,
    ApprovalStatus,
    AuditAction,
    EscalationAction,
)
from general_ledger.money import normalize_currency, to_decimal
from general_ledger.schemas.approval import ApprovalWorkflowCreate
from general_ledger.services.approver_resolvers import (
    ApproverResolver,
    ResolutionContext,
    resolve_approvers,
)
from general_ledger.services.audit_service import AuditService
from general_ledger.services.context import SYSTEM_ACTOR, RequestContext
from general_ledger.services.directory import (
    IdentityResolver,
    NotificationOutbox,
    get_identity_resolver,
)

logger = get_logger("services.approval_engine")

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class DocumentRef:
    """The only view of a document the engine ever gets."""
    document_type: str
    document_id: str
    amount: Decimal
    currency: str
    document_number: str | None = None


@dataclass
class ActionPayload:
    notes: str | None = None
    reason: str | None = None
    step_order: int | None = None
    delegate_to: str | None = None
    expected_version: int | None = None


@dataclass
class SweepResult:
    expired: list[ApprovalRequest] = field(default_factory=list)
    escalated: list[ApprovalRequest] = field(default_factory=list)
    auto_approved: list[ApprovalRequest] = field(default_factory=list)
    auto_rejected: list[ApprovalRequest] = field(default_factory=list)
    notified: list[ApprovalRequest] = field(default_factory=list)

    @property
    def completed(self) -> list[ApprovalRequest]:
        """Requests that reached a terminal status during the sweep."""
        return [
            r for r in self.expired + self.auto_approved + self.auto_rejected
            if r.is_terminal
        ]


def request_snapshot(request: ApprovalRequest) -> dict:
    return {
        "status": request.status.value,
        "current_step_order": request.current_step_order,
        "total_steps": request.total_steps,
        "resolved_approvers": dict(request.resolved_approvers or {}),
        "step_approvals": dict(request.step_approvals or {}),
        "delegated_to": request.delegated_to,
    }


class ApprovalEngine:

    def __init__(
        self,
        db: Session,
        audit: AuditService | None = None,
        identity: IdentityResolver | None = None,
        outbox: NotificationOutbox | None = None,
        resolvers: dict | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.identity = identity or get_identity_resolver()
        self.outbox = outbox if outbox is not None else NotificationOutbox()
        self.resolvers: dict | None = resolvers
        self.clock = clock

    # --- Configuration ---

    def create_workflow(
        self, ctx: RequestContext, definition: ApprovalWorkflowCreate
    ) -> ApprovalWorkflow:
        existing = self.db.execute(
            select(ApprovalWorkflow).where(
                ApprovalWorkflow.tenant_id == ctx.tenant_id,
                ApprovalWorkflow.code == definition.code,
            )
        ).scalar_one_or_none()
        if existing:
            raise ConflictError(
                f"Approval workflow '{definition.code}' already exists"
            )

        data = definition.model_dump(exclude={"steps"})
        if data.get("currency_code"):
            data["currency_code"] = normalize_currency(data["currency_code"])
        workflow = ApprovalWorkflow(
            tenant_id=ctx.tenant_id,
            sub_scope_id=ctx.sub_scope_id,
            created_by=ctx.actor_id,
            **data,
        )
        workflow.steps = [
            ApprovalStep(**step.model_dump()) for step in definition.steps
        ]
        self.db.add(workflow)
        self.db.flush()

        self.audit.record(
            ctx, "ApprovalWorkflow", workflow.id, AuditAction.CREATE,
            new_values={
                "code": workflow.code,
                "document_type": workflow.document_type,
                "rule_type": workflow.rule_type.value,
                "step_orders": [s.step_order for s in workflow.steps],
            },
        )
        return workflow

    def get_workflow(self, ctx: RequestContext, workflow_id: int) -> ApprovalWorkflow:
        workflow = self.db.get(ApprovalWorkflow, workflow_id)
        if workflow is None or workflow.tenant_id != ctx.tenant_id:
            raise NotFoundError("ApprovalWorkflow", workflow_id)
        return workflow

    def select_workflow(
        self, ctx: RequestContext, document: DocumentRef
    ) -> ApprovalWorkflow | None:
        candidates = self.db.execute(
            select(ApprovalWorkflow)
            .where(
                ApprovalWorkflow.tenant_id == ctx.tenant_id,
                ApprovalWorkflow.document_type == document.document_type,
                ApprovalWorkflow.is_active.is_(True),
            )
            .order_by(ApprovalWorkflow.priority, ApprovalWorkflow.id)
        ).scalars().all()

        amount = to_decimal(document.amount)
        for workflow in candidates:
            if workflow.sub_scope_id not in (None, ctx.sub_scope_id):
                continue
            if workflow.currency_code and workflow.currency_code != document.currency:
                continue
            if workflow.min_amount is not None and amount < workflow.min_amount:
                continue
            if workflow.max_amount is not None and amount >= workflow.max_amount:
                continue
            return workflow
        return None

    # --- Requests ---

    def create_request(
        self,
        ctx: RequestContext,
        document: DocumentRef,
        submitter: str | None = None,
        notes: str | None = None,
        context: dict | None = None,
    ) -> ApprovalRequest:
        """
        Start approval for a document.

        Raises ConflictError when the document already has an open
        request. Returns an APPROVED request when no step applies.
        """
        submitter = submitter or ctx.actor_id
        if self.get_open_request(ctx, document.document_type, document.document_id):
            raise ConflictError(
                f"{document.document_type} {document.document_id} already has "
                f"an open approval request"
            )

        now = self.clock()
        amount = to_decimal(document.amount)
        workflow = self.select_workflow(ctx, document)
        steps = []
        if workflow is not None:
            steps = [s for s in workflow.steps if s.is_active and s.applies_to(amount)]

        request = ApprovalRequest(
            tenant_id=ctx.tenant_id,
            sub_scope_id=ctx.sub_scope_id,
            workflow_id=workflow.id if workflow else None,
            document_type=document.document_type,
            document_id=str(document.document_id),
            document_number=document.document_number,
            document_amount=amount,
            document_currency=normalize_currency(document.currency),
            step_orders=[s.step_order for s in steps],
            total_steps=len(steps),
            current_step_order=0,
            resolved_approvers={},
            step_approvals={},
            context=dict(context or {}),
            submitted_by=submitter,
            submitted_at=now,
            submitter_notes=notes,
        )
        request.workflow = workflow

        if not steps:
            request.status = ApprovalStatus.APPROVED
            request.completed_at = now
            request.completed_by = submitter
            self.db.add(request)
            self.db.flush()
            self._record(
                ctx, request, ApprovalAction.SKIP, None, None,
                comments="No approval step applies to this document",
            )
            logger.info(
                "approval_skipped",
                extra={
                    "request_id": request.id,
                    "document_id": request.document_id,
                    "workflow_id": request.workflow_id,
                },
            )
            return request

        request.status = ApprovalStatus.PENDING
        expiry_hours = workflow.expiry_hours or get_settings().DEFAULT_APPROVAL_EXPIRY_HOURS
        if expiry_hours:
            request.expires_at = now + timedelta(hours=expiry_hours)
        self._enter_step(request, steps[0], now)
        self.db.add(request)
        self.db.flush()

        self._record(ctx, request, ApprovalAction.SUBMIT, None, None, comments=notes)
        self._notify_step(request)
        logger.info(
            "approval_requested",
            extra={
                "request_id": request.id,
                "document_id": request.document_id,
                "total_steps": request.total_steps,
            },
        )
        return request

    def act(
        self,
        ctx: RequestContext,
        request_id: int,
        action: ApprovalAction,
        payload: ActionPayload | None = None,
    ) -> ApprovalRequest:
        """Apply one approver/submitter action to a request."""
        payload = payload or ActionPayload()
        request = self.get_request(ctx, request_id)
        if (
            payload.expected_version is not None
            and request.version != payload.expected_version
        ):
            raise ConflictError(
                f"Approval request {request.id} has changed; refetch and retry",
                {"current_version": request.version,
                 "expected_version": payload.expected_version},
            )

        handlers = {
            ApprovalAction.APPROVE: self._approve,
            ApprovalAction.REJECT: self._reject,
            ApprovalAction.DELEGATE: self._delegate,
            ApprovalAction.RECALL: self._recall,
            ApprovalAction.COMMENT: self._comment,
        }
        handler = handlers.get(action)
        if handler is None:
            raise ValidationError.single(
                "UNSUPPORTED_ACTION",
                f"Action {action.value} cannot be requested directly",
                field="action",
            )
        return handler(ctx, request, payload)

    def cancel(
        self, ctx: RequestContext, request: ApprovalRequest, reason: str | None
    ) -> ApprovalRequest:
        """Withdraw an open request because its document went away (void)."""
        self._require_open(request)
        previous, before = request.status, request_snapshot(request)
        self._finish(request, ApprovalStatus.RECALLED, ctx.actor_id)
        self.db.flush()
        self._record(ctx, request, ApprovalAction.RECALL, previous, before, comments=reason)
        return request

    # --- Action handlers ---

    def _approve(self, ctx, request, payload):
        self._require_open(request)
        current = request.current_step_order
        actor = ctx.actor_id

        if payload.step_order is not None and payload.step_order != current:
            if payload.step_order > current:
                raise ConflictError(
                    f"Step {payload.step_order} of request {request.id} is not active"
                )
            if actor in request.approvers_for(payload.step_order):
                logger.info(
                    "approval_step_already_complete",
                    extra={"request_id": request.id, "step_order": payload.step_order},
                )
                return request
            raise PermissionDeniedError(
                f"{actor} is not an approver for step {payload.step_order}"
            )

        self._require_approver(request, actor)
        approvals = request.approvals_for(current)
        if actor in approvals:
            logger.info(
                "approval_already_recorded",
                extra={"request_id": request.id, "step_order": current},
            )
            return request

        previous, before = request.status, request_snapshot(request)
        approvals.append(actor)
        request.step_approvals = {**request.step_approvals, str(current): approvals}
        if len(approvals) >= request.current_quorum:
            self._complete_step(request, actor)
        self.db.flush()

        self._record(
            ctx, request, ApprovalAction.APPROVE, previous, before,
            comments=payload.notes, step_order=current,
        )
        logger.info(
            "approval_recorded",
            extra={
                "request_id": request.id,
                "step_order": current,
                "to_status": request.status.value,
            },
        )
        return request

    def _reject(self, ctx, request, payload):
        self._require_open(request)
        reason = (payload.reason or payload.notes or "").strip()
        if not reason:
            raise ValidationError.single(
                "MISSING_REASON", "A reason is required to reject", field="reason"
            )
        self._require_approver(request, ctx.actor_id)

        previous, before = request.status, request_snapshot(request)
        current = request.current_step_order
        self._finish(request, ApprovalStatus.REJECTED, ctx.actor_id)
        self.db.flush()

        self._record(
            ctx, request, ApprovalAction.REJECT, previous, before,
            comments=reason, step_order=current,
        )
        self.outbox.add("rejected", self._payload(request, [request.submitted_by], reason=reason))
        logger.info(
            "approval_rejected",
            extra={"request_id": request.id, "step_order": current},
        )
        return request

    def _delegate(self, ctx, request, payload):
        self._require_open(request)
        workflow = request.workflow
        if workflow is None or not workflow.allow_delegation:
            raise PermissionDeniedError(
                f"Workflow for request {request.id} does not allow delegation"
            )
        target = (payload.delegate_to or "").strip()
        if not target:
            raise ValidationError.single(
                "MISSING_DELEGATE", "A delegate is required", field="delegate_to"
            )
        actor = ctx.actor_id
        if target == actor:
            raise ValidationError.single(
                "MISSING_DELEGATE", "Cannot delegate to yourself", field="delegate_to"
            )
        self._require_approver(request, actor)

        previous, before = request.status, request_snapshot(request)
        current = request.current_step_order
        approvers = []
        for approver in request.approvers_for(current):
            replacement = target if approver == actor else approver
            if replacement not in approvers:
                approvers.append(replacement)
        request.resolved_approvers = {
            **request.resolved_approvers, str(current): approvers
        }
        request.status = ApprovalStatus.DELEGATED
        request.delegated_to = target
        request.delegated_by = actor
        request.delegated_at = self.clock()
        request.delegation_reason = payload.reason
        self.db.flush()

        self._record(
            ctx, request, ApprovalAction.DELEGATE, previous, before,
            comments=payload.reason, delegated_to=target, step_order=current,
        )
        self.outbox.add("approval_required", self._payload(request, [target]))
        return request

    def _recall(self, ctx, request, payload):
        self._require_open(request)
        if ctx.actor_id != request.submitted_by:
            raise PermissionDeniedError("Only the submitter can recall a request")
        if request.workflow is not None and not request.workflow.allow_recall:
            raise PermissionDeniedError(
                f"Workflow for request {request.id} does not allow recall"
            )

        previous, before = request.status, request_snapshot(request)
        self._finish(request, ApprovalStatus.RECALLED, ctx.actor_id)
        self.db.flush()
        self._record(
            ctx, request, ApprovalAction.RECALL, previous, before,
            comments=payload.reason,
        )
        return request

    def _comment(self, ctx, request, payload):
        comments = (payload.notes or "").strip()
        if not comments:
            raise ValidationError.single(
                "MISSING_REASON", "A comment cannot be empty", field="comments"
            )
        participants = {request.submitted_by}
        for approvers in (request.resolved_approvers or {}).values():
            participants.update(approvers)
        if ctx.actor_id not in participants:
            raise PermissionDeniedError(
                f"{ctx.actor_id} is not a participant in request {request.id}"
            )
        self._record(
            ctx, request, ApprovalAction.COMMENT, request.status,
            request_snapshot(request), comments=comments,
        )
        return request

    # --- Scheduled sweep ---

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """
        Expire and escalate open requests across all tenants.

        Each step's escalation action is applied at most once,
        so running the sweep again with the same clock changes
        nothing.
        """
        now = now or self.clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc).replace(tzinfo=None)
        result = SweepResult()
        open_requests = self.db.execute(
            select(ApprovalRequest)
            .where(ApprovalRequest.status.in_(OPEN_APPROVAL_STATUSES))
            .order_by(ApprovalRequest.id)
        ).scalars().all()

        for request in open_requests:
            ctx = RequestContext(request.tenant_id, request.sub_scope_id, SYSTEM_ACTOR)

            if request.expires_at is not None and now >= request.expires_at:
                previous, before = request.status, request_snapshot(request)
                self._finish(request, ApprovalStatus.EXPIRED, SYSTEM_ACTOR, now)
                self.db.flush()
                self._record(
                    ctx, request, ApprovalAction.EXPIRE, previous, before,
                    comments="Approval window expired",
                )
                result.expired.append(request)
                continue

            step = self._current_step(request)
            if (
                step is None
                or not step.escalation_hours
                or request.escalated_step_order == request.current_step_order
                or request.step_started_at is None
                or now < request.step_started_at + timedelta(hours=step.escalation_hours)
            ):
                continue

            self._escalate(ctx, request, step, now, result)

        if open_requests:
            logger.info(
                "approval_sweep_completed",
                extra={
                    "expired": len(result.expired),
                    "escalated": len(result.escalated),
                    "auto_approved": len(result.auto_approved),
                    "auto_rejected": len(result.auto_rejected),
                    "notified": len(result.notified),
                },
            )
        return result

    def _escalate(self, ctx, request, step, now, result: SweepResult) -> None:
        current = request.current_step_order
        previous, before = request.status, request_snapshot(request)
        request.escalated_step_order = current
        action = step.escalation_action
        comment = f"No decision within {step.escalation_hours} hours"

        if action == EscalationAction.AUTO_APPROVE:
            self._complete_step(request, SYSTEM_ACTOR, now)
            self.db.flush()
            self._record(
                ctx, request, ApprovalAction.APPROVE, previous, before,
                comments=f"{comment}; auto-approved", step_order=current,
            )
            result.auto_approved.append(request)
        elif action == EscalationAction.AUTO_REJECT:
            self._finish(request, ApprovalStatus.REJECTED, SYSTEM_ACTOR, now)
            self.db.flush()
            self._record(
                ctx, request, ApprovalAction.REJECT, previous, before,
                comments=f"{comment}; auto-rejected", step_order=current,
            )
            self.outbox.add(
                "rejected", self._payload(request, [request.submitted_by], reason=comment)
            )
            result.auto_rejected.append(request)
        elif action == EscalationAction.ESCALATE:
            approvers = request.approvers_for(current)
            for recipient in step.escalation_recipient_ids or []:
                if recipient not in approvers:
                    approvers.append(recipient)
            request.resolved_approvers = {
                **request.resolved_approvers, str(current): approvers
            }
            request.status = ApprovalStatus.ESCALATED
            self.db.flush()
            self._record(
                ctx, request, ApprovalAction.ESCALATE, previous, before,
                comments=comment, step_order=current,
            )
            self.outbox.add(
                "escalated",
                self._payload(request, list(step.escalation_recipient_ids or [])),
            )
            result.escalated.append(request)
        elif action == EscalationAction.NOTIFY:
            self.db.flush()
            self.outbox.add("escalated", self._payload(request, request.approvers_for(current)))
            result.notified.append(request)
        else:
            self.db.flush()

    # --- Queries ---

    def get_request(self, ctx: RequestContext, request_id: int) -> ApprovalRequest:
        request = self.db.get(ApprovalRequest, request_id)
        if request is None or request.tenant_id != ctx.tenant_id:
            raise NotFoundError("ApprovalRequest", request_id)
        return request

    def get_open_request(
        self, ctx: RequestContext, document_type: str, document_id
    ) -> ApprovalRequest | None:
        return self.db.execute(
            select(ApprovalRequest).where(
                ApprovalRequest.tenant_id == ctx.tenant_id,
                ApprovalRequest.document_type == document_type,
                ApprovalRequest.document_id == str(document_id),
                ApprovalRequest.status.in_(OPEN_APPROVAL_STATUSES),
            )
        ).scalars().first()

    def list_requests(
        self,
        ctx: RequestContext,
        status: ApprovalStatus | None = None,
        document_type: str | None = None,
        pending_for: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[ApprovalRequest], int]:
        """
        Requests for the tenant, newest first.

        pending_for keeps open requests whose current step lists
        that identity as an approver who has not yet approved.
        """
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        conditions = [ApprovalRequest.tenant_id == ctx.tenant_id]
        if status is not None:
            conditions.append(ApprovalRequest.status == status)
        if document_type:
            conditions.append(ApprovalRequest.document_type == document_type)
        query = (
            select(ApprovalRequest)
            .where(*conditions)
            .order_by(ApprovalRequest.submitted_at.desc(), ApprovalRequest.id.desc())
        )

        if pending_for:
            # Approver sets live in JSON; filter after loading
            rows = [
                r for r in self.db.execute(
                    query.where(ApprovalRequest.status.in_(OPEN_APPROVAL_STATUSES))
                ).scalars().all()
                if pending_for in r.approvers_for(r.current_step_order)
                and pending_for not in r.approvals_for(r.current_step_order)
            ]
            start = (page - 1) * page_size
            return rows[start:start + page_size], len(rows)

        total = self.db.execute(
            select(func.count()).select_from(ApprovalRequest).where(*conditions)
        ).scalar_one()
        items = self.db.execute(
            query.offset((page - 1) * page_size).limit(page_size)
        ).scalars().all()
        return list(items), total

    def get_history(self, ctx: RequestContext, request_id: int) -> list[ApprovalHistory]:
        self.get_request(ctx, request_id)
        return list(
            self.db.execute(
                select(ApprovalHistory)
                .where(ApprovalHistory.request_id == request_id)
                .order_by(ApprovalHistory.id)
            ).scalars().all()
        )

    def summary(self, ctx: RequestContext, now: datetime | None = None) -> dict:
        now = now or self.clock()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        tenant = ApprovalRequest.tenant_id == ctx.tenant_id

        def count(*conditions) -> int:
            return self.db.execute(
                select(func.count()).select_from(ApprovalRequest).where(tenant, *conditions)
            ).scalar_one()

        is_open = ApprovalRequest.status.in_(OPEN_APPROVAL_STATUSES)
        return {
            "pending_count": count(is_open),
            "approved_today": count(
                ApprovalRequest.status == ApprovalStatus.APPROVED,
                ApprovalRequest.completed_at >= day_start,
            ),
            "rejected_today": count(
                ApprovalRequest.status == ApprovalStatus.REJECTED,
                ApprovalRequest.completed_at >= day_start,
            ),
            "overdue_count": count(
                is_open,
                ApprovalRequest.due_at.is_not(None),
                ApprovalRequest.due_at <= now,
            ),
        }

    # --- Internals ---

    def _require_open(self, request: ApprovalRequest) -> None:
        if not request.is_open:
            raise ConflictError(
                f"Approval request {request.id} is already {request.status.value}",
                {"status": request.status.value},
            )

    def _require_approver(self, request: ApprovalRequest, actor: str) -> None:
        if actor not in request.approvers_for(request.current_step_order):
            raise PermissionDeniedError(
                f"{actor} is not an approver for step "
                f"{request.current_step_order} of request {request.id}",
                {"request_id": request.id, "step_order": request.current_step_order},
            )

    def _current_step(self, request: ApprovalRequest) -> ApprovalStep | None:
        if request.workflow is None:
            return None
        for step in request.workflow.steps:
            if step.step_order == request.current_step_order:
                return step
        return None

    def _quorum(self, workflow: ApprovalWorkflow, step: ApprovalStep, approvers: list[str]) -> int:
        available = max(len(approvers), 1)
        rule = workflow.rule_type
        if rule == ApprovalRuleType.ANY:
            needed = 1
        elif rule in (ApprovalRuleType.ALL, ApprovalRuleType.MATRIX):
            needed = step.required_approvals if step.required_approvals > 1 else len(approvers)
        else:
            needed = step.required_approvals
        return max(1, min(needed, available))

    def _enter_step(self, request: ApprovalRequest, step: ApprovalStep, now: datetime) -> None:
        approvers = resolve_approvers(
            step,
            ResolutionContext(
                submitter_id=request.submitted_by,
                identity=self.identity,
                values=request.context or {},
            ),
            self.resolvers,
        )
        request.current_step_order = step.step_order
        request.resolved_approvers = {
            **(request.resolved_approvers or {}), str(step.step_order): approvers
        }
        request.current_quorum = self._quorum(request.workflow, step, approvers)
        request.step_started_at = now
        request.escalated_step_order = None
        request.due_at = (
            now + timedelta(hours=step.escalation_hours)
            if step.escalation_hours else None
        )

    def _complete_step(
        self, request: ApprovalRequest, actor: str, now: datetime | None = None
    ) -> None:
        now = now or self.clock()
        orders = list(request.step_orders)
        position = orders.index(request.current_step_order)
        if position + 1 < len(orders):
            next_order = orders[position + 1]
            step = next(s for s in request.workflow.steps if s.step_order == next_order)
            self._enter_step(request, step, now)
            request.status = ApprovalStatus.PENDING
            self._notify_step(request)
        else:
            self._finish(request, ApprovalStatus.APPROVED, actor, now)
            self.outbox.add("approved", self._payload(request, [request.submitted_by]))

    def _finish(
        self,
        request: ApprovalRequest,
        status: ApprovalStatus,
        actor: str,
        now: datetime | None = None,
    ) -> None:
        request.status = status
        request.completed_at = now or self.clock()
        request.completed_by = actor
        request.due_at = None

    def _notify_step(self, request: ApprovalRequest) -> None:
        self.outbox.add(
            "approval_required",
            self._payload(request, request.approvers_for(request.current_step_order)),
        )

    @staticmethod
    def _payload(request: ApprovalRequest, recipients: list[str], **extra) -> dict:
        return {
            "tenant_id": request.tenant_id,
            "request_id": request.id,
            "document_type": request.document_type,
            "document_id": request.document_id,
            "step_order": request.current_step_order,
            "recipients": list(recipients),
            **extra,
        }

    def _record(
        self,
        ctx: RequestContext,
        request: ApprovalRequest,
        action: ApprovalAction,
        previous_status: ApprovalStatus | None,
        previous_state: dict | None,
        comments: str | None = None,
        delegated_to: str | None = None,
        step_order: int | None = None,
    ) -> ApprovalHistory:
        """One history row and one audit row for a request action."""
        new_state = request_snapshot(request)
        history = ApprovalHistory(
            tenant_id=request.tenant_id,
            request_id=request.id,
            step_order=step_order if step_order is not None else request.current_step_order,
            action=action,
            previous_status=previous_status,
            new_status=request.status,
            actor_id=ctx.actor_id,
            comments=comments,
            delegated_to=delegated_to,
            previous_state=previous_state,
            new_state=new_state,
        )
        self.db.add(history)
        self.db.flush()
        self.audit.record(
            ctx, "ApprovalRequest", request.id, AuditAction(action.value),
            previous_values=previous_state,
            new_values=new_state,
            reason=comments,
        )
        return history
