# Overview: Permission decorator for service entry points.

from functools import wraps

from .services import permission_service


def require_permission(resource_type: str, action: str, resource_id_arg: str | None = None):
    """
    Ask the authorization gate before running the wrapped service function.

    The actor is taken from the `actor_id` keyword argument; the resource id,
    when resource_id_arg names a keyword argument, is passed along so gates
    can make per-record decisions. A denial raises PermissionDeniedError
    before the wrapped function touches the database.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor_id = kwargs.get("actor_id")
            resource_id = kwargs.get(resource_id_arg) if resource_id_arg else None
            permission_service.require_permission(actor_id, resource_type, action, resource_id)
            return f(*args, **kwargs)

        decorated_function.required_permission = f"{resource_type}:{action}"
        return decorated_function

    return decorator
