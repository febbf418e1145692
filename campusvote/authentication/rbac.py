# campusvote/authentication/rbac.py

from enum import Enum
from functools import wraps
import logging

from flask_jwt_extended import get_jwt, verify_jwt_in_request

from campusvote.responses import fail

# Role-Based Access Control over the role claim of the session token

logger = logging.getLogger(__name__)


class UserRole(Enum):
    VOTER = "voter"
    ADMIN = "admin"


class Permission(Enum):
    VIEW_BALLOT = "view_ballot"
    CAST_VOTE = "cast_vote"
    ASK_QUESTIONS = "ask_questions"
    VIEW_SUMMARY = "view_summary"
    MANAGE_ELECTIONS = "manage_elections"
    MANAGE_CANDIDATES = "manage_candidates"
    MANAGE_MANIFESTOS = "manage_manifestos"


# Role -> Permissions mapping
ROLE_PERMISSIONS = {
    UserRole.VOTER: [
        Permission.VIEW_BALLOT,
        Permission.CAST_VOTE,
        Permission.ASK_QUESTIONS,
        Permission.VIEW_SUMMARY,
    ],
    UserRole.ADMIN: [
        Permission.ASK_QUESTIONS,
        Permission.VIEW_SUMMARY,
        Permission.MANAGE_ELECTIONS,
        Permission.MANAGE_CANDIDATES,
        Permission.MANAGE_MANIFESTOS,
    ],
}


class RBACService:
    def has_permission(self, user_role, permission):
        try:
            if isinstance(user_role, str):
                user_role = UserRole(user_role.lower().strip())
            if isinstance(permission, str):
                permission = Permission(permission.lower().strip())
        except ValueError:
            return False
        return permission in ROLE_PERMISSIONS.get(user_role, [])

    def get_permissions(self, user_role):
        if isinstance(user_role, str):
            user_role = UserRole(user_role)
        return ROLE_PERMISSIONS.get(user_role, [])


rbac_service = RBACService()


def require_permission(permission):
    """Require a valid, unrevoked session whose role grants ``permission``."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            role = get_jwt().get('role')
            if not rbac_service.has_permission(role, permission):
                logger.warning("Permission %s denied for role %s", permission.value, role)
                return fail('Insufficient permissions', status=403)
            return func(*args, **kwargs)
        return wrapper
    return decorator
