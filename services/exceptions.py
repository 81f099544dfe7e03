"""
Custom exceptions for the Campus Virtual system.

Every error a service raises carries the HTTP status it maps to, the API
layer turns it into `{"error": message}` without further translation.
"""


class CampusError(Exception):
    """Base class for expected, client-facing failures."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class Unauthenticated(CampusError):
    """Raised when no valid session is present."""

    status_code = 401

    def __init__(self, message: str = "No autenticado"):
        super().__init__(message)


class Forbidden(CampusError):
    """Raised when a user attempts an unauthorized action."""

    status_code = 403

    def __init__(self, message: str = "No tienes permisos para realizar esta acción",
                 user_id: int = None, action: str = None):
        self.user_id = user_id
        self.action = action
        super().__init__(message)


class AccountPending(Forbidden):
    """Raised when a student awaiting approval tries to write."""

    def __init__(self, user_id: int = None, action: str = None):
        message = (
            "Tu cuenta está pendiente de aprobación. No podés realizar esta acción "
            "hasta que un administrador apruebe tu cuenta."
        )
        super().__init__(message, user_id=user_id, action=action)


class AccountRejected(Forbidden):
    """Raised when a rejected student tries to write."""

    def __init__(self, user_id: int = None, action: str = None):
        message = "Tu cuenta ha sido rechazada. Contactá a un administrador para más información."
        super().__init__(message, user_id=user_id, action=action)


class NotFound(CampusError):
    """Raised when a resource is absent or invisible to the caller."""

    status_code = 404

    def __init__(self, message: str = "Recurso no encontrado"):
        super().__init__(message)


class ValidationError(CampusError):
    """Raised when input validation fails."""

    status_code = 400

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class Conflict(CampusError):
    """Raised on a duplicate unique key."""

    status_code = 409

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class Unavailable(CampusError):
    """Raised for known transient outages (maintenance, upstream down)."""

    status_code = 503

    def __init__(self, message: str = "Servicio no disponible", retry_after: int = None):
        self.retry_after = retry_after
        super().__init__(message)
