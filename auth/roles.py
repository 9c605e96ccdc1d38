# Role-Based Action Control for Collaboration Conversations
# This module defines actor roles and the flow actions each role may perform

from enum import Enum
from typing import List, Optional, Set


class ActorRole(str, Enum):
    """Roles that can act on a conversation."""
    BRAND_OWNER = "brand_owner"
    INFLUENCER = "influencer"
    ADMIN = "admin"
    SYSTEM = "system"


class FlowAction(str, Enum):
    """Every action the flow engine understands."""

    # Influencer actions
    ACCEPT_CONNECTION = "accept_connection"
    REJECT_CONNECTION = "reject_connection"
    ACCEPT_PROJECT_DETAILS = "accept_project_details"
    REJECT_PROJECT_DETAILS = "reject_project_details"
    ACCEPT_PRICE = "accept_price"
    REJECT_PRICE = "reject_price"
    NEGOTIATE_PRICE = "negotiate_price"
    SEND_NEGOTIATED_PRICE = "send_negotiated_price"
    START_WORK = "start_work"
    SUBMIT_WORK = "submit_work"
    RESUBMIT_WORK = "resubmit_work"

    # Brand owner actions
    SEND_PROJECT_DETAILS = "send_project_details"
    SEND_PRICE_OFFER = "send_price_offer"
    ACCEPT_NEGOTIATION = "accept_negotiation"
    REJECT_NEGOTIATION = "reject_negotiation"
    ACCEPT_NEGOTIATED_PRICE = "accept_negotiated_price"
    REJECT_NEGOTIATED_PRICE = "reject_negotiated_price"
    PROCEED_TO_PAYMENT = "proceed_to_payment"
    APPROVE_WORK = "approve_work"
    REQUEST_REVISION = "request_revision"
    REJECT_FINAL_WORK = "reject_final_work"

    # Admin actions
    RECEIVE_BRAND_OWNER_PAYMENT = "receive_brand_owner_payment"
    RELEASE_ADVANCE = "release_advance"
    RELEASE_FINAL = "release_final"
    REFUND_FINAL = "refund_final"
    FORCE_CLOSE = "force_close"

    # System actions
    AUTO_APPROVE_WORK = "auto_approve_work"


# Role to actions mapping
ROLE_ACTIONS: dict[ActorRole, Set[FlowAction]] = {
    ActorRole.INFLUENCER: {
        FlowAction.ACCEPT_CONNECTION,
        FlowAction.REJECT_CONNECTION,
        FlowAction.ACCEPT_PROJECT_DETAILS,
        FlowAction.REJECT_PROJECT_DETAILS,
        FlowAction.ACCEPT_PRICE,
        FlowAction.REJECT_PRICE,
        FlowAction.NEGOTIATE_PRICE,
        FlowAction.SEND_NEGOTIATED_PRICE,
        FlowAction.START_WORK,
        FlowAction.SUBMIT_WORK,
        FlowAction.RESUBMIT_WORK,
    },

    ActorRole.BRAND_OWNER: {
        FlowAction.SEND_PROJECT_DETAILS,
        FlowAction.SEND_PRICE_OFFER,
        FlowAction.ACCEPT_NEGOTIATION,
        FlowAction.REJECT_NEGOTIATION,
        FlowAction.ACCEPT_NEGOTIATED_PRICE,
        FlowAction.REJECT_NEGOTIATED_PRICE,
        FlowAction.PROCEED_TO_PAYMENT,
        FlowAction.APPROVE_WORK,
        FlowAction.REQUEST_REVISION,
        FlowAction.REJECT_FINAL_WORK,
    },

    ActorRole.ADMIN: {
        FlowAction.RECEIVE_BRAND_OWNER_PAYMENT,
        FlowAction.RELEASE_ADVANCE,
        FlowAction.RELEASE_FINAL,
        FlowAction.REFUND_FINAL,
        FlowAction.FORCE_CLOSE,
    },

    ActorRole.SYSTEM: {
        FlowAction.AUTO_APPROVE_WORK,
    },
}

# Actions that bypass the awaiting-role turn check
OVERRIDE_ACTIONS: Set[FlowAction] = ROLE_ACTIONS[ActorRole.ADMIN] | ROLE_ACTIONS[ActorRole.SYSTEM]


def parse_role(value) -> Optional[ActorRole]:
    """Return the ActorRole for a raw value, or None if it is not a role."""
    try:
        return ActorRole(value)
    except ValueError:
        return None


def parse_action(value) -> Optional[FlowAction]:
    """Return the FlowAction for a raw value, or None if it is unknown."""
    try:
        return FlowAction(value)
    except ValueError:
        return None


def get_actions_for_role(role: ActorRole) -> Set[FlowAction]:
    """Get all actions a given role may perform."""
    return ROLE_ACTIONS.get(role, set())


def can_perform(role: ActorRole, action: FlowAction) -> bool:
    """Check if a role owns a specific action."""
    return action in get_actions_for_role(role)


def roles_for_action(action: FlowAction) -> List[ActorRole]:
    """Roles that own the given action."""
    return [role for role, actions in ROLE_ACTIONS.items() if action in actions]


PARTICIPANT_ROLES: Set[ActorRole] = {ActorRole.BRAND_OWNER, ActorRole.INFLUENCER}


def is_counterparty_action(role: ActorRole, action: FlowAction) -> bool:
    """True when a participant names an action that belongs to the other participant."""
    if role not in PARTICIPANT_ROLES:
        return False
    return any(owner in PARTICIPANT_ROLES and owner != role for owner in roles_for_action(action))
