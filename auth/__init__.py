# Auth module for the Collaboration Platform
# Provides actor roles and role-based action control

from auth.roles import (
    ActorRole,
    FlowAction,
    ROLE_ACTIONS,
    OVERRIDE_ACTIONS,
    parse_role,
    parse_action,
    get_actions_for_role,
    can_perform,
    roles_for_action,
)

__all__ = [
    "ActorRole",
    "FlowAction",
    "ROLE_ACTIONS",
    "OVERRIDE_ACTIONS",
    "parse_role",
    "parse_action",
    "get_actions_for_role",
    "can_perform",
    "roles_for_action",
]
