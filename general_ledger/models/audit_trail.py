"""
Audit trail model.

Records every state-changing action for compliance. In
accounting, auditability is not optional: an unaudited
mutation is worse than a failed one.
"""

from datetime import datetime

from sqlalchemy import String, Text, DateTime, JSON, Index, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from general_ledger.models.base import Base, utcnow
from general_ledger.models.enums import AuditAction


class AuditTrail(Base):
    """
    Immutable record of a system event.

    Audit rows are append-only. You never update or delete an
    audit record; the ORM refuses to.
    """

    __tablename__ = "audit_trail"
    __table_args__ = (
        Index("ix_audit_trail_entity", "tenant_id", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(64), nullable=False, index=True
    )
    sub_scope_id: Mapped[str | None] = mapped_column(String(64))
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        SAEnum(AuditAction, name="audit_action_enum"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_values: Mapped[dict | None] = mapped_column(JSON)
    new_values: Mapped[dict | None] = mapped_column(JSON)
    reason: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<AuditTrail {self.entity_type}:{self.entity_id} "
            f"{self.action.value} by {self.actor_id}>"
        )
