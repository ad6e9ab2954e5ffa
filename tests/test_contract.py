"""Behaviour every storage backend must share, run against each configured backend."""
from concurrent.futures import ThreadPoolExecutor

import pytest
from pydantic import ValidationError

from swarm_tickets.core.errors import DuplicateTicket, RateLimitExceeded
from swarm_tickets.schemas.bug_report import BUG_REPORT_ACTION, BUG_REPORT_MESSAGE
from swarm_tickets.schemas.ticket import TicketCreate, TicketUpdate


def test_create_ticket_defaults(adapter):
    ticket = adapter.create_ticket({"route": "/login"})

    assert ticket.id.startswith("TKT-")
    assert ticket.route == "/login"
    assert ticket.status == "open"
    assert ticket.priority is None
    assert ticket.namespace is None
    assert ticket.f12_errors == ""
    assert ticket.server_errors == ""
    assert ticket.related_tickets == []
    assert ticket.swarm_actions == []
    assert ticket.comments == []
    assert ticket.created_at == ticket.updated_at
    assert ticket.created_at.tzinfo is not None


def test_get_ticket_round_trip(adapter):
    created = adapter.create_ticket(
        TicketCreate(
            route="/checkout",
            f12_errors="TypeError: x is undefined",
            server_errors="500 on POST /orders",
            description="Checkout button does nothing",
            status="in-progress",
            priority="high",
            namespace="web/checkout",
            related_tickets=["TKT-1", "TKT-2", "TKT-1"],
            swarm_actions=["triaged"],
            comments=[{"content": "Seen on Safari", "metadata": {"browser": "safari"}}],
        )
    )

    fetched = adapter.get_ticket(created.id)

    assert fetched == created
    assert fetched.related_tickets == ["TKT-1", "TKT-2"]
    assert fetched.swarm_actions[0].action == "triaged"
    assert fetched.swarm_actions[0].result is None
    assert fetched.comments[0].author == "anonymous"
    assert fetched.comments[0].type == "human"
    assert fetched.comments[0].metadata == {"browser": "safari"}
    assert fetched.comments[0].id.startswith("CMT-")


def test_get_missing_ticket_returns_none(adapter):
    assert adapter.get_ticket("TKT-404") is None


def test_ticket_ids_are_unique_and_increasing(adapter):
    ids = [adapter.create_ticket({"route": f"/r{i}"}).id for i in range(5)]

    assert len(set(ids)) == 5
    tokens = [int(ticket_id[len("TKT-"):]) for ticket_id in ids]
    assert tokens == sorted(tokens)


def test_explicit_id_and_timestamps_are_kept(adapter):
    ticket = adapter.create_ticket(
        {
            "id": "TKT-1700000000000",
            "route": "/legacy",
            "createdAt": "2023-11-14T22:13:20Z",
            "updatedAt": "2023-11-15T08:00:00Z",
        }
    )

    assert ticket.id == "TKT-1700000000000"
    assert ticket.created_at.isoformat() == "2023-11-14T22:13:20+00:00"
    assert ticket.updated_at.isoformat() == "2023-11-15T08:00:00+00:00"
    assert adapter.get_ticket("TKT-1700000000000").created_at == ticket.created_at


def test_duplicate_explicit_id_is_rejected(adapter):
    adapter.create_ticket({"id": "TKT-1", "route": "/a"})

    with pytest.raises(DuplicateTicket):
        adapter.create_ticket({"id": "TKT-1", "route": "/b"})

    assert adapter.get_ticket("TKT-1").route == "/a"


def test_initialize_twice_keeps_data(adapter):
    ticket = adapter.create_ticket({"route": "/a"})

    adapter.initialize()

    assert [t.id for t in adapter.get_all_tickets()] == [ticket.id]


def test_list_is_newest_first(adapter):
    first = adapter.create_ticket({"route": "/a"})
    second = adapter.create_ticket({"route": "/b"})
    third = adapter.create_ticket({"route": "/c"})

    assert [t.id for t in adapter.get_all_tickets()] == [third.id, second.id, first.id]


def test_tied_creation_times_order_by_id(adapter):
    stamp = "2024-01-01T00:00:00Z"
    adapter.create_ticket({"id": "TKT-1", "route": "/a", "createdAt": stamp})
    adapter.create_ticket({"id": "TKT-2", "route": "/b", "createdAt": stamp})

    assert [t.id for t in adapter.get_all_tickets()] == ["TKT-2", "TKT-1"]


def test_filters(adapter):
    login = adapter.create_ticket({"route": "/Auth/Login", "status": "open", "priority": "critical"})
    cart = adapter.create_ticket({"route": "/cart", "status": "fixed", "priority": "low"})
    closed = adapter.create_ticket({"route": "/auth/logout", "status": "closed"})

    assert [t.id for t in adapter.get_all_tickets({"status": "fixed"})] == [cart.id]
    assert {t.id for t in adapter.get_all_tickets({"excludeStatus": "closed"})} == {login.id, cart.id}
    assert [t.id for t in adapter.get_all_tickets({"priority": "critical"})] == [login.id]
    assert [t.id for t in adapter.get_all_tickets({"route": "auth"})] == [closed.id, login.id]
    assert [t.id for t in adapter.get_all_tickets({"route": "AUTH", "exclude_status": "closed"})] == [login.id]
    assert adapter.get_all_tickets({"status": "in-progress"}) == []


def test_route_filter_matches_wildcards_literally(adapter):
    literal = adapter.create_ticket({"route": "/reports/100%_done"})
    adapter.create_ticket({"route": "/reports/1000xdone"})

    assert [t.id for t in adapter.get_all_tickets({"route": "0%_d"})] == [literal.id]


def test_route_filter_folds_non_ascii_case(adapter):
    ticket = adapter.create_ticket({"route": "/Über-uns"})
    adapter.create_ticket({"route": "/ueber"})

    assert [t.id for t in adapter.get_all_tickets({"route": "über"})] == [ticket.id]


def test_update_ticket_applies_allowed_fields(adapter):
    ticket = adapter.create_ticket({"route": "/a", "priority": "low", "namespace": "web", "description": "old"})

    updated = adapter.update_ticket(
        ticket.id,
        {
            "status": "In Progress",
            "priority": "high",
            "description": "new",
            "serverErrors": "boom",
            "id": "TKT-hijack",
            "createdAt": "2000-01-01T00:00:00Z",
            "unknown": "ignored",
        },
    )

    assert updated.id == ticket.id
    assert updated.status == "in-progress"
    assert updated.priority == "high"
    assert updated.description == "new"
    assert updated.server_errors == "boom"
    assert updated.namespace == "web"
    assert updated.created_at == ticket.created_at
    assert updated.updated_at > ticket.updated_at
    assert adapter.get_ticket(ticket.id) == updated


def test_update_null_clears_priority_and_namespace_only(adapter):
    ticket = adapter.create_ticket({"route": "/a", "priority": "low", "namespace": "web", "description": "keep"})

    updated = adapter.update_ticket(ticket.id, {"priority": None, "namespace": None, "description": None})

    assert updated.priority is None
    assert updated.namespace is None
    assert updated.description == "keep"


def test_update_replaces_related_tickets(adapter):
    ticket = adapter.create_ticket({"route": "/a", "relatedTickets": ["TKT-1", "TKT-2"]})

    updated = adapter.update_ticket(ticket.id, TicketUpdate(related_tickets=["TKT-2", "TKT-3", "TKT-3"]))

    assert updated.related_tickets == ["TKT-2", "TKT-3"]
    assert adapter.get_ticket(ticket.id).related_tickets == ["TKT-2", "TKT-3"]


def test_update_rejects_unknown_status(adapter):
    ticket = adapter.create_ticket({"route": "/a"})

    with pytest.raises(ValidationError):
        adapter.update_ticket(ticket.id, {"status": "done-ish"})

    assert adapter.get_ticket(ticket.id).status == "open"


def test_update_missing_ticket_returns_none(adapter):
    assert adapter.update_ticket("TKT-404", {"status": "fixed"}) is None


def test_delete_cascades_to_children(adapter):
    target = adapter.create_ticket(
        {"route": "/a", "swarmActions": ["triaged"], "comments": [{"content": "hi"}], "relatedTickets": ["TKT-9"]}
    )
    referrer = adapter.create_ticket({"route": "/b", "relatedTickets": [target.id]})

    assert adapter.delete_ticket(target.id) is True

    assert adapter.get_ticket(target.id) is None
    assert adapter.get_comments(target.id) is None
    assert adapter.delete_ticket(target.id) is False
    # References held by other tickets are one-directional and left alone.
    assert adapter.get_ticket(referrer.id).related_tickets == [target.id]


def test_add_swarm_action(adapter):
    ticket = adapter.create_ticket({"route": "/a"})

    updated = adapter.add_swarm_action(ticket.id, {"action": "patched", "result": "added null check"})

    assert [a.action for a in updated.swarm_actions] == ["patched"]
    assert updated.swarm_actions[0].result == "added null check"
    assert updated.swarm_actions[0].timestamp == updated.updated_at
    assert updated.updated_at > ticket.updated_at
    assert adapter.get_ticket(ticket.id) == updated
    assert adapter.add_swarm_action("TKT-404", {"action": "x"}) is None


def test_comment_lifecycle(adapter):
    ticket = adapter.create_ticket({"route": "/a"})

    first = adapter.add_comment(ticket.id, {"content": "first", "metadata": {"a": 1, "b": 2}})
    second = adapter.add_comment(ticket.id, {"type": "ai", "author": "fixer", "content": "second"})

    assert first.id.startswith("CMT-")
    assert first.id != second.id
    assert first.edited_at is None
    assert second.type == "ai"
    assert [c.id for c in adapter.get_comments(ticket.id)] == [first.id, second.id]

    edited = adapter.update_comment(ticket.id, first.id, {"content": "edited", "metadata": {"b": 3, "c": 4}})

    assert edited.content == "edited"
    assert edited.metadata == {"a": 1, "b": 3, "c": 4}
    assert edited.edited_at is not None
    assert edited.timestamp == first.timestamp
    assert adapter.get_comments(ticket.id)[0] == edited
    assert adapter.get_ticket(ticket.id).updated_at == edited.edited_at

    assert adapter.delete_comment(ticket.id, first.id) is True
    assert adapter.delete_comment(ticket.id, first.id) is False
    assert [c.id for c in adapter.get_comments(ticket.id)] == [second.id]


def test_update_comment_without_content_keeps_text(adapter):
    ticket = adapter.create_ticket({"route": "/a"})
    comment = adapter.add_comment(ticket.id, {"content": "keep me"})

    edited = adapter.update_comment(ticket.id, comment.id, {"metadata": {"resolved": True}})

    assert edited.content == "keep me"
    assert edited.metadata == {"resolved": True}


def test_comments_are_scoped_to_their_ticket(adapter):
    owner = adapter.create_ticket({"route": "/a"})
    other = adapter.create_ticket({"route": "/b"})
    comment = adapter.add_comment(owner.id, {"content": "mine"})

    assert adapter.add_comment("TKT-404", {"content": "x"}) is None
    assert adapter.get_comments(other.id) == []
    assert adapter.update_comment(other.id, comment.id, {"content": "stolen"}) is None
    assert adapter.delete_comment(other.id, comment.id) is False
    assert adapter.update_comment(owner.id, "CMT-404", {"content": "x"}) is None
    assert adapter.get_comments(owner.id)[0].content == "mine"


def test_stats(adapter):
    adapter.create_ticket({"route": "/a", "status": "open", "priority": "critical"})
    adapter.create_ticket({"route": "/b", "status": "open"})
    adapter.create_ticket({"route": "/c", "status": "in-progress", "priority": "low"})
    adapter.create_ticket({"route": "/d", "status": "closed", "priority": "low"})

    stats = adapter.get_stats()

    assert stats.total == 4
    assert stats.by_status.model_dump(by_alias=True) == {"open": 2, "inProgress": 1, "fixed": 0, "closed": 1}
    assert stats.by_priority.model_dump() == {"critical": 1, "high": 0, "medium": 0, "low": 2}
    assert sum(stats.by_status.model_dump().values()) == stats.total


def test_bug_report_creates_minimal_ticket(adapter):
    receipt = adapter.create_bug_report(
        {
            "location": "/settings",
            "clientError": "Uncaught ReferenceError",
            "description": "Save fails",
            "userAgent": "Firefox",
            "ip": "203.0.113.5",
        }
    )

    assert receipt.status == "submitted"
    assert receipt.message == BUG_REPORT_MESSAGE

    ticket = adapter.get_ticket(receipt.id)
    assert ticket.route == "/settings"
    assert ticket.f12_errors == "Uncaught ReferenceError"
    assert ticket.server_errors == ""
    assert ticket.priority is None
    assert ticket.status == "open"
    assert [a.action for a in ticket.swarm_actions] == [BUG_REPORT_ACTION]
    assert "Firefox" in ticket.swarm_actions[0].result


def test_bug_report_route_falls_back_to_unknown(adapter):
    receipt = adapter.create_bug_report({"description": "no location"})

    assert adapter.get_ticket(receipt.id).route == "unknown"


def test_anonymous_bug_reports_are_rate_limited(adapter, clock):
    report = {"location": "/a", "ip": "203.0.113.5"}
    for _ in range(10):
        adapter.create_bug_report(report)

    with pytest.raises(RateLimitExceeded) as exc:
        adapter.create_bug_report(report)

    assert exc.value.identifier == "203.0.113.5"
    assert exc.value.limit == 10
    assert 0 < exc.value.retry_after <= 3600
    assert adapter.get_stats().total == 10

    # Someone else is still welcome.
    adapter.create_bug_report({"location": "/a", "ip": "198.51.100.7"})

    clock.advance(hours=1)
    adapter.create_bug_report(report)
    assert adapter.get_stats().total == 12


def test_concurrent_creates_all_succeed(adapter):
    with ThreadPoolExecutor(max_workers=16) as pool:
        created = list(pool.map(lambda i: adapter.create_ticket({"route": f"/r{i}"}), range(100)))

    assert len({ticket.id for ticket in created}) == 100
    assert len(adapter.get_all_tickets()) == 100


def test_concurrent_bug_reports_respect_the_limit(adapter):
    def submit(_):
        try:
            adapter.create_bug_report({"location": "/a", "ip": "1.2.3.4"})
        except RateLimitExceeded:
            return False
        return True

    with ThreadPoolExecutor(max_workers=20) as pool:
        outcomes = list(pool.map(submit, range(20)))

    assert outcomes.count(True) == 10
    assert adapter.get_stats().total == 10
