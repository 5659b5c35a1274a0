"""Service layer exceptions, shared by every service and translated to HTTP in api/errors.py."""


class ServiceError(Exception):
    """General exception class for the service layer."""
    pass


# --- Who is asking ---

class Unauthorized(ServiceError):
    """No valid session accompanies a privileged request."""
    pass

class Unauthenticated(ServiceError):
    """An attendance action was attempted without a signed-in principal."""
    pass

class Forbidden(ServiceError):
    """The principal is signed in but its role does not allow the action."""
    pass


# --- What was sent ---

class InvalidInput(ServiceError):
    pass

class MalformedCode(ServiceError):
    pass

class UnknownCode(ServiceError):
    pass

class InactiveCode(ServiceError):
    pass

class NotFound(ServiceError):
    pass


# --- Business rule conflicts (nothing is written) ---

class AlreadyMarked(ServiceError):
    pass

class AlreadyCheckedIn(ServiceError):
    pass

class CheckOutTooEarly(ServiceError):
    pass

class NoOpenSession(ServiceError):
    pass

class IdentityConflict(ServiceError):
    pass


# --- Downstream failures ---

class PersistenceError(ServiceError):
    """A store or identity provider operation failed."""
    pass
