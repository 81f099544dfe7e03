"""
Services module for the Campus Virtual system.

Every operation takes a database session and the resolved caller, applies the
role gate and the ownership/enrollment filter, and raises a CampusError
subclass on failure. Side effects go through the SideEffectSink.
"""
from .exceptions import (
    CampusError,
    Unauthenticated,
    Forbidden,
    AccountPending,
    AccountRejected,
    NotFound,
    ValidationError,
    Conflict,
    Unavailable,
)

from .authorization import (
    Access,
    AuthorizationService,
    get_authorization_service,
    parse_role,
    role_satisfies,
)

from .sink import (
    AuditAction,
    SideEffectSink,
)

from .sessions import (
    open_session,
    resolve_session,
)

from .storage import (
    ObjectStorage,
    StoredObject,
    get_storage,
)

__all__ = [
    # Exceptions
    "CampusError",
    "Unauthenticated",
    "Forbidden",
    "AccountPending",
    "AccountRejected",
    "NotFound",
    "ValidationError",
    "Conflict",
    "Unavailable",
    # Authorization
    "Access",
    "AuthorizationService",
    "get_authorization_service",
    "parse_role",
    "role_satisfies",
    # Side effects
    "AuditAction",
    "SideEffectSink",
    # Sessions
    "open_session",
    "resolve_session",
    # Storage
    "ObjectStorage",
    "StoredObject",
    "get_storage",
]
