# Overview: Authorization gate consulted before every mutating operation.

"""
Authorization Gate

WHY: The services are called from HTTP handlers, CLI commands and jobs. The
decision "may this actor do this action on this resource" is a collaborator
injected at app creation, not something each service re-implements.

DESIGN PRINCIPLES:
- The gate is asked BEFORE any business read or write.
- A denial is logged as a HIGH PERMISSION_DENIED audit event.
- AllowAllGate is the default so CLI and tests run without setup;
  deployments install a StaticPermissionGate or their own implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from flask import current_app

from ..errors import PermissionDeniedError
from . import audit_service


GATE_EXTENSION_KEY = "o2c_authorization_gate"
WILDCARD = "*"


class AuthorizationGate(ABC):
    """Interface: answer whether actor_id may perform action on a resource."""

    @abstractmethod
    def is_allowed(self, actor_id, resource_type: str, action: str, resource_id=None) -> bool:
        raise NotImplementedError


class AllowAllGate(AuthorizationGate):
    def is_allowed(self, actor_id, resource_type: str, action: str, resource_id=None) -> bool:
        return True


class StaticPermissionGate(AuthorizationGate):
    """
    Grants keyed by actor.

    Each grant is "RESOURCE:ACTION" where either half may be "*":
        {"clerk-1": {"ORDER:CREATE", "ORDER:UPDATE"}, "admin": {"*:*"}}
    Actors not in the map (including None) are denied.
    """

    def __init__(self, grants: dict | None = None):
        self._grants = {
            str(actor): {str(g).upper() for g in perms}
            for actor, perms in (grants or {}).items()
        }

    def grant(self, actor_id, permission: str) -> None:
        self._grants.setdefault(str(actor_id), set()).add(permission.upper())

    def is_allowed(self, actor_id, resource_type: str, action: str, resource_id=None) -> bool:
        if actor_id is None:
            return False
        perms = self._grants.get(str(actor_id), set())
        resource_type = resource_type.upper()
        action = action.upper()
        candidates = {
            f"{resource_type}:{action}",
            f"{resource_type}:{WILDCARD}",
            f"{WILDCARD}:{action}",
            f"{WILDCARD}:{WILDCARD}",
            WILDCARD,
        }
        return bool(perms & candidates)


def get_gate() -> AuthorizationGate:
    gate = current_app.extensions.get(GATE_EXTENSION_KEY)
    if gate is None:
        gate = AllowAllGate()
        current_app.extensions[GATE_EXTENSION_KEY] = gate
    return gate


def set_gate(app, gate: AuthorizationGate | None) -> None:
    app.extensions[GATE_EXTENSION_KEY] = gate or AllowAllGate()


def check_permission(actor_id, resource_type: str, action: str, resource_id=None) -> bool:
    return get_gate().is_allowed(actor_id, resource_type, action, resource_id)


def require_permission(actor_id, resource_type: str, action: str, resource_id=None) -> None:
    """
    Raise PermissionDeniedError (after logging it) if the gate refuses.
    """
    if check_permission(actor_id, resource_type, action, resource_id):
        return

    current_app.logger.warning(
        "Permission denied: actor=%s action=%s:%s resource_id=%s",
        actor_id, resource_type, action, resource_id,
    )
    audit_service.record_security_event(
        event_type="PERMISSION_DENIED",
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        actor_id=actor_id,
        details={"required_permission": f"{resource_type}:{action}"},
    )
    raise PermissionDeniedError(
        f"Actor is not allowed to {action} {resource_type}",
        details={"resource_type": resource_type, "action": action},
    )
