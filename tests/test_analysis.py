from datetime import datetime, timezone

import pytest

from swarm_tickets.analysis import AUTO_ANALYSIS_ACTION, analyze_ticket, derive_priority, find_related
from swarm_tickets.schemas.ticket import TicketResponse

STAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _ticket(**fields):
    fields.setdefault("id", "TKT-1")
    return TicketResponse(created_at=STAMP, updated_at=STAMP, **fields)


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"route": "/home"}, "low"),
        ({"route": "/home", "f12_errors": "TypeError in render"}, "medium"),
        ({"route": "/home", "server_errors": "Unhandled ERROR"}, "medium"),
        ({"route": "/home", "f12_errors": "Uncaught TypeError"}, "high"),
        ({"route": "/home", "server_errors": "worker crashed"}, "high"),
        ({"route": "/home", "server_errors": "FATAL: too many connections"}, "high"),
        ({"route": "/auth/login"}, "critical"),
        ({"route": "/payment", "f12_errors": "Uncaught"}, "critical"),
    ],
)
def test_derive_priority(fields, expected):
    assert derive_priority(_ticket(**fields)) == expected


def test_find_related_matches_exact_route_only():
    ticket = _ticket(id="TKT-1", route="/cart")
    candidates = [
        ticket,
        _ticket(id="TKT-2", route="/cart"),
        _ticket(id="TKT-3", route="/cart/items"),
        _ticket(id="TKT-4", route="/cart"),
        _ticket(id="TKT-5", route="/cart"),
        _ticket(id="TKT-6", route="/cart"),
    ]

    assert find_related(ticket, candidates) == ["TKT-2", "TKT-4", "TKT-5"]


def test_analyze_ticket(adapter):
    older = adapter.create_ticket({"route": "/checkout/payment"})
    ticket = adapter.create_ticket({"route": "/checkout/payment", "f12Errors": "Uncaught TypeError"})
    adapter.create_ticket({"route": "/checkout/payment/confirm"})

    analyzed = analyze_ticket(adapter, ticket.id)

    assert analyzed.priority == "critical"
    assert analyzed.related_tickets == [older.id]
    assert analyzed.swarm_actions[-1].action == AUTO_ANALYSIS_ACTION
    assert analyzed.swarm_actions[-1].result == "Priority set to critical, found 1 related tickets"


def test_analyze_missing_ticket(adapter):
    assert analyze_ticket(adapter, "TKT-404") is None
