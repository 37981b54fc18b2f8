"""
Approver resolution strategies, one per approver type.

The approval engine asks the resolver registered for a step's
approver_type who may act on that step. Resolution is lazy: a
step's approvers are computed only when the request reaches it.
"""

from dataclasses import dataclass, field

from general_ledger.logging_config import get_logger
from general_ledger.models.approval import ApprovalStep
from general_ledger.models.enums import ApproverType
from general_ledger.services.directory import IdentityResolver

logger = get_logger("services.approver_resolvers")


@dataclass(frozen=True)
class ResolutionContext:
    """What a resolver may look at: the submitter and the request context."""
    submitter_id: str
    identity: IdentityResolver
    values: dict = field(default_factory=dict)


class ApproverResolver:
    def resolve(self, step: ApprovalStep, context: ResolutionContext) -> list[str]:
        raise NotImplementedError


class UserApproverResolver(ApproverResolver):
    """The step's explicitly listed user ids."""

    def resolve(self, step, context):
        return [str(user) for user in step.approver_user_ids or []]


class RoleApproverResolver(ApproverResolver):
    """Every member of any of the step's roles."""

    def resolve(self, step, context):
        members: set[str] = set()
        for role in step.approver_roles or []:
            members |= context.identity.members_of_role(role)
        return sorted(members)


class ManagerApproverResolver(ApproverResolver):
    """The submitter's manager."""

    def resolve(self, step, context):
        manager = context.identity.manager_of(context.submitter_id)
        return [manager] if manager else []


class DynamicApproverResolver(ApproverResolver):
    """
    Identities read from the request context.

    ``step.dynamic_approver_field`` names the context key; its
    value may be a single id or a list of ids.
    """

    def resolve(self, step, context):
        key = step.dynamic_approver_field
        if not key:
            return []
        value = context.values.get(key)
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            return [str(v) for v in value if v]
        return [str(value)]


DEFAULT_RESOLVERS: dict[ApproverType, ApproverResolver] = {
    ApproverType.USER: UserApproverResolver(),
    ApproverType.ROLE: RoleApproverResolver(),
    ApproverType.MANAGER: ManagerApproverResolver(),
    ApproverType.DYNAMIC: DynamicApproverResolver(),
}


def resolve_approvers(
    step: ApprovalStep,
    context: ResolutionContext,
    resolvers: dict[ApproverType, ApproverResolver] | None = None,
) -> list[str]:
    """Distinct approver ids for a step, in resolution order."""
    registry = resolvers or DEFAULT_RESOLVERS
    resolver = registry[step.approver_type]
    seen: list[str] = []
    for approver in resolver.resolve(step, context):
        if approver not in seen:
            seen.append(approver)
    if not seen:
        logger.warning(
            "step_has_no_approvers",
            extra={
                "step_order": step.step_order,
                "approver_type": step.approver_type.value,
            },
        )
    return seen
