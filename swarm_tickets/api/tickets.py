from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from swarm_tickets.analysis import analyze_ticket
from swarm_tickets.api.deps import get_storage
from swarm_tickets.schemas.ticket import (
    SwarmActionCreate,
    TicketCreate,
    TicketFilters,
    TicketResponse,
    TicketStats,
    TicketUpdate,
)
from swarm_tickets.storage.base import StorageAdapter

router = APIRouter(prefix="/api", tags=["Tickets"])


def _ticket_or_404(ticket: Optional[TicketResponse]) -> TicketResponse:
    if ticket is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return ticket


@router.get("/tickets", response_model=List[TicketResponse])
def get_tickets(
    status_filter: Optional[str] = Query(None, alias="status"),
    exclude_status: Optional[str] = Query(None, alias="excludeStatus"),
    priority: Optional[str] = Query(None),
    route: Optional[str] = Query(None, description="Case-insensitive substring of the route."),
    storage: StorageAdapter = Depends(get_storage),
):
    """
    List tickets, newest first.
    """
    filters = TicketFilters(status=status_filter, exclude_status=exclude_status, priority=priority, route=route)
    return storage.get_all_tickets(filters)


@router.post("/tickets", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(ticket_in: TicketCreate, storage: StorageAdapter = Depends(get_storage)):
    return storage.create_ticket(ticket_in)


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
def get_ticket(ticket_id: str, storage: StorageAdapter = Depends(get_storage)):
    """
    Retrieve a single ticket with its actions and comments.
    """
    return _ticket_or_404(storage.get_ticket(ticket_id))


@router.patch("/tickets/{ticket_id}", response_model=TicketResponse)
def update_ticket(ticket_id: str, update_data: TicketUpdate, storage: StorageAdapter = Depends(get_storage)):
    """
    Partially update a ticket. Only the triage fields are writable;
    anything else in the payload is ignored.
    """
    return _ticket_or_404(storage.update_ticket(ticket_id, update_data))


@router.delete("/tickets/{ticket_id}")
def delete_ticket(ticket_id: str, storage: StorageAdapter = Depends(get_storage)):
    if not storage.delete_ticket(ticket_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found")
    return {"message": "Ticket deleted"}


@router.post("/tickets/{ticket_id}/swarm-action", response_model=TicketResponse)
def add_swarm_action(ticket_id: str, action: SwarmActionCreate, storage: StorageAdapter = Depends(get_storage)):
    """
    Record something the swarm did on this ticket.
    """
    # The storage layer stamps the action; a client supplied time is not trusted here.
    action = action.model_copy(update={"timestamp": None})
    return _ticket_or_404(storage.add_swarm_action(ticket_id, action))


@router.post("/tickets/{ticket_id}/analyze", response_model=TicketResponse)
def analyze(ticket_id: str, storage: StorageAdapter = Depends(get_storage)):
    """
    Run rule-based triage: set priority, link tickets on the same route
    and log an auto-analysis action.
    """
    return _ticket_or_404(analyze_ticket(storage, ticket_id))


@router.get("/stats", response_model=TicketStats, tags=["Stats"])
def get_stats(storage: StorageAdapter = Depends(get_storage)):
    return storage.get_stats()
