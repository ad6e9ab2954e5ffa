"""Rule-based triage for a single ticket.

A stand-in for real swarm analysis: derive a priority from the captured errors
and route, and link other tickets reported on the same route.
"""
from typing import List, Optional

from swarm_tickets.schemas.ticket import TicketPriorityEnum, TicketResponse
from swarm_tickets.storage.base import StorageAdapter

AUTO_ANALYSIS_ACTION = "auto-analysis"
MAX_RELATED = 3
CRITICAL_ROUTE_MARKERS = ("auth", "payment")


def derive_priority(ticket: TicketResponse) -> str:
    f12_errors = (ticket.f12_errors or "").lower()
    server_errors = (ticket.server_errors or "").lower()
    route = ticket.route or ""

    priority = TicketPriorityEnum.LOW
    if "error" in f12_errors or "error" in server_errors:
        priority = TicketPriorityEnum.MEDIUM
    if "uncaught" in f12_errors or "fatal" in server_errors or "crash" in server_errors:
        priority = TicketPriorityEnum.HIGH
    if any(marker in route for marker in CRITICAL_ROUTE_MARKERS):
        priority = TicketPriorityEnum.CRITICAL
    return priority.value


def find_related(ticket: TicketResponse, candidates: List[TicketResponse], limit: int = MAX_RELATED) -> List[str]:
    """IDs of up to ``limit`` other tickets on exactly the same route."""
    return [t.id for t in candidates if t.id != ticket.id and t.route == ticket.route][:limit]


def analyze_ticket(storage: StorageAdapter, ticket_id: str) -> Optional[TicketResponse]:
    ticket = storage.get_ticket(ticket_id)
    if ticket is None:
        return None

    priority = derive_priority(ticket)
    candidates = storage.get_all_tickets({"route": ticket.route}) if ticket.route else []
    related = find_related(ticket, candidates)

    storage.update_ticket(ticket_id, {"priority": priority, "related_tickets": related})
    return storage.add_swarm_action(
        ticket_id,
        {
            "action": AUTO_ANALYSIS_ACTION,
            "result": f"Priority set to {priority}, found {len(related)} related tickets",
        },
    )
