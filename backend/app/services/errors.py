class LifecycleError(ValueError):
    """Base class for user-visible store and lifecycle errors."""


class LifecycleValidationError(LifecycleError):
    pass


class LifecycleNotFoundError(LifecycleError):
    pass


class LifecycleConflictError(LifecycleError):
    pass


class LifecycleForbiddenError(LifecycleError):
    pass


class InvalidTransitionError(LifecycleConflictError):
    pass


class NoDispatcherAvailableError(LifecycleConflictError):
    pass


class PersistenceFailureError(LifecycleError):
    """A store write or read failed; nothing was committed."""

    def __init__(self, message: str = "Something went wrong. Please contact support.") -> None:
        super().__init__(message)
