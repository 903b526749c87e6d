from fastapi import HTTPException

from app.services.errors import (
    LifecycleConflictError,
    LifecycleError,
    LifecycleForbiddenError,
    LifecycleNotFoundError,
    PersistenceFailureError,
)


def raise_lifecycle_http_error(exc: LifecycleError) -> None:
    if isinstance(exc, LifecycleNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, LifecycleForbiddenError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, LifecycleConflictError):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PersistenceFailureError):
        raise HTTPException(status_code=503, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))
