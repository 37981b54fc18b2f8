"""Who is calling, and on behalf of which tenant."""

from dataclasses import dataclass

# Actor recorded for scheduled jobs (escalation sweep, expiry)
SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class RequestContext:
    """
    Tenant scope and acting identity for one operation.

    Every query a service runs is filtered by tenant_id, so two
    tenants never see (or contend on) each other's rows.
    """
    tenant_id: str
    sub_scope_id: str | None = None
    actor_id: str = SYSTEM_ACTOR
