"""
Audit trail recorder.

Every state-changing operation in the engine calls record()
with the same session it used for the change, so the audit row
commits or rolls back together with the mutation it describes.
Errors are never swallowed here: a mutation that cannot be
audited must not happen.
"""

from dataclasses import dataclass

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from general_ledger.logging_config import get_logger
from general_ledger.models.audit_trail import AuditTrail
from general_ledger.models.enums import AuditAction
from general_ledger.schemas.audit import AuditSearchFilters
from general_ledger.services.context import RequestContext

logger = get_logger("services.audit")

MAX_PAGE_SIZE = 100


@dataclass
class AuditPage:
    items: list[AuditTrail]
    total: int
    page: int
    page_size: int


class AuditService:

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        ctx: RequestContext,
        entity_type: str,
        entity_id,
        action: AuditAction,
        previous_values: dict | None = None,
        new_values: dict | None = None,
        reason: str | None = None,
        description: str | None = None,
    ) -> AuditTrail:
        """Append one audit row in the caller's unit of work."""
        row = AuditTrail(
            tenant_id=ctx.tenant_id,
            sub_scope_id=ctx.sub_scope_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            actor_id=ctx.actor_id,
            previous_values=previous_values,
            new_values=new_values,
            reason=reason,
            description=description,
        )
        self.db.add(row)
        self.db.flush()
        logger.debug(
            "audit_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return row

    def search(
        self,
        ctx: RequestContext,
        filters: AuditSearchFilters | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> AuditPage:
        """
        Filtered, paginated trail for the caller's tenant.

        Newest first unless filters.order is "asc". The free-text
        term matches entity id, actor, reason and description.
        """
        filters = filters or AuditSearchFilters()
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

        conditions = [AuditTrail.tenant_id == ctx.tenant_id]
        if ctx.sub_scope_id is not None:
            conditions.append(AuditTrail.sub_scope_id == ctx.sub_scope_id)
        if filters.entity_type:
            conditions.append(AuditTrail.entity_type == filters.entity_type)
        if filters.entity_id:
            conditions.append(AuditTrail.entity_id == filters.entity_id)
        if filters.action:
            conditions.append(AuditTrail.action == filters.action)
        if filters.actor_id:
            conditions.append(AuditTrail.actor_id == filters.actor_id)
        if filters.date_from:
            conditions.append(AuditTrail.created_at >= filters.date_from)
        if filters.date_to:
            conditions.append(AuditTrail.created_at <= filters.date_to)
        if filters.search:
            term = f"%{filters.search.strip()}%"
            conditions.append(
                or_(
                    AuditTrail.entity_id.ilike(term),
                    AuditTrail.actor_id.ilike(term),
                    AuditTrail.reason.ilike(term),
                    AuditTrail.description.ilike(term),
                )
            )

        total = self.db.execute(
            select(func.count()).select_from(AuditTrail).where(*conditions)
        ).scalar_one()

        if filters.order == "asc":
            ordering = (AuditTrail.created_at.asc(), AuditTrail.id.asc())
        else:
            ordering = (AuditTrail.created_at.desc(), AuditTrail.id.desc())

        items = self.db.execute(
            select(AuditTrail)
            .where(*conditions)
            .order_by(*ordering)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars().all()

        return AuditPage(
            items=list(items), total=total, page=page, page_size=page_size
        )

    def get_entity_trail(
        self, ctx: RequestContext, entity_type: str, entity_id
    ) -> list[AuditTrail]:
        """Full history of one entity, oldest first."""
        return list(
            self.db.execute(
                select(AuditTrail)
                .where(
                    AuditTrail.tenant_id == ctx.tenant_id,
                    AuditTrail.entity_type == entity_type,
                    AuditTrail.entity_id == str(entity_id),
                )
                .order_by(AuditTrail.created_at.asc(), AuditTrail.id.asc())
            ).scalars().all()
        )
