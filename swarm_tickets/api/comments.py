from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from swarm_tickets.api.deps import get_storage
from swarm_tickets.schemas.ticket import CommentCreate, CommentResponse, CommentUpdate
from swarm_tickets.storage.base import StorageAdapter

router = APIRouter(prefix="/api/tickets/{ticket_id}/comments", tags=["Comments"])


@router.get("", response_model=List[CommentResponse])
def get_comments(ticket_id: str, storage: StorageAdapter = Depends(get_storage)):
    comments = storage.get_comments(ticket_id)
    if comments is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return comments


@router.post("", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
def add_comment(ticket_id: str, comment_in: CommentCreate, storage: StorageAdapter = Depends(get_storage)):
    """
    Add a human or AI comment to the ticket's thread.
    """
    # IDs and timestamps are assigned by storage for live comments.
    comment_in = comment_in.model_copy(update={"id": None, "timestamp": None, "edited_at": None})
    comment = storage.add_comment(ticket_id, comment_in)
    if comment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return comment


@router.patch("/{comment_id}", response_model=CommentResponse)
def update_comment(
    ticket_id: str,
    comment_id: str,
    update_data: CommentUpdate,
    storage: StorageAdapter = Depends(get_storage),
):
    """
    Replace the comment text and merge metadata keys.
    """
    comment = storage.update_comment(ticket_id, comment_id, update_data)
    if comment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")
    return comment


@router.delete("/{comment_id}")
def delete_comment(ticket_id: str, comment_id: str, storage: StorageAdapter = Depends(get_storage)):
    if not storage.delete_comment(ticket_id, comment_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")
    return {"message": "Comment deleted"}
