from fastapi import HTTPException, Request, status

from swarm_tickets.storage.base import StorageAdapter


def get_storage(request: Request) -> StorageAdapter:
    """The adapter the application was started with."""
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage not initialized")
    return storage
