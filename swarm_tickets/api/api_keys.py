from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from swarm_tickets.api.deps import get_storage
from swarm_tickets.schemas.api_key import ApiKeyCreate, ApiKeyCreated, ApiKeyResponse
from swarm_tickets.storage.base import StorageAdapter

router = APIRouter(prefix="/api/admin/api-keys", tags=["API Keys"])


@router.post("", response_model=ApiKeyCreated, status_code=status.HTTP_201_CREATED)
def create_api_key(
    key_in: Optional[ApiKeyCreate] = None,
    storage: StorageAdapter = Depends(get_storage),
):
    """
    Issue a new key for the bug-report widget. The secret is only shown here.
    """
    return storage.create_api_key(key_in.name if key_in else None)


@router.get("", response_model=List[ApiKeyResponse])
def list_api_keys(storage: StorageAdapter = Depends(get_storage)):
    return storage.list_api_keys()


@router.delete("/{key}")
def revoke_api_key(key: str, storage: StorageAdapter = Depends(get_storage)):
    if not storage.revoke_api_key(key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
    return {"message": "API key revoked"}
