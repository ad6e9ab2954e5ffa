"""Flat JSON file storage.

The whole dataset lives in memory and every mutation rewrites the file. This
only holds up for one process with modest volume; two processes writing the
same file will overwrite each other's changes. Within one process a lock
serialises every operation, so overlapping requests from the server's thread
pool see each other's writes. Use one of the SQL backends for anything larger.
"""
import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from swarm_tickets.core.clock import Clock, ensure_utc
from swarm_tickets.core.errors import DuplicateTicket, InvalidApiKey, StorageUnavailable
from swarm_tickets.schemas.ticket import (
    CommentResponse,
    SwarmActionResponse,
    TicketResponse,
    TicketStats,
    upgrade_legacy_ticket,
)
from swarm_tickets.storage.backup import BackupManager
from swarm_tickets.storage.base import StorageAdapter
from swarm_tickets.storage.rate_limit import InMemoryRateLimiter

logger = logging.getLogger("swarm-tickets.storage.json")


class JsonAdapter(StorageAdapter):
    kind = "json"

    def __init__(
        self,
        json_path="./tickets.json",
        backup_dir="./ticket-backups",
        clock: Optional[Clock] = None,
        backups: Optional[BackupManager] = None,
    ):
        super().__init__(clock)
        self.tickets_path = Path(json_path).resolve()
        self.backup_dir = Path(backup_dir).resolve()
        self.backups = backups or BackupManager(self.tickets_path, self.backup_dir, clock=self.now)
        self.rate_limiter = InMemoryRateLimiter()
        self._tickets: List[TicketResponse] = []
        self._lock = threading.RLock()

    # ==================== LIFECYCLE ====================

    def initialize(self) -> None:
        with self._lock:
            self._load()

    def _load(self) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.tickets_path.parent.mkdir(parents=True, exist_ok=True)

        if not self.tickets_path.exists():
            self._tickets = []
            self._save()
            logger.info(f"Created ticket file {self.tickets_path}")
            return

        try:
            document = json.loads(self.tickets_path.read_text(encoding="utf-8") or '{"tickets": []}')
        except ValueError as exc:
            raise StorageUnavailable(
                f"Ticket file {self.tickets_path} is not valid JSON ({exc}). "
                f"Restore it from {self.backup_dir} or move it aside to start fresh."
            ) from exc

        self._tickets = [
            self._normalize(TicketResponse.model_validate(upgrade_legacy_ticket(raw)))
            for raw in document.get("tickets") or []
        ]
        logger.info(f"Loaded {len(self._tickets)} tickets from {self.tickets_path}")

    def close(self) -> None:
        # Nothing held open between writes.
        pass

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """
        Hold the lock from lookup to save. If anything inside raises, the
        in-memory tickets go back to how they were, so a write that never
        reached the file is never visible.
        """
        with self._lock:
            snapshot = [ticket.model_copy(deep=True) for ticket in self._tickets]
            try:
                yield
            except Exception:
                self._tickets = snapshot
                raise

    def _save(self) -> None:
        self.backups.create_backup()
        document = {"tickets": [ticket.model_dump(mode="json", by_alias=True) for ticket in self._tickets]}
        temp_path = self.tickets_path.with_name(self.tickets_path.name + ".tmp")
        temp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(temp_path, self.tickets_path)

    @staticmethod
    def _normalize(ticket: TicketResponse) -> TicketResponse:
        ticket.created_at = ensure_utc(ticket.created_at)
        ticket.updated_at = max(ensure_utc(ticket.updated_at), ticket.created_at)
        for action in ticket.swarm_actions:
            action.timestamp = ensure_utc(action.timestamp)
        for comment in ticket.comments:
            comment.timestamp = ensure_utc(comment.timestamp)
            if comment.edited_at is not None:
                comment.edited_at = ensure_utc(comment.edited_at)
        return ticket

    def _find(self, ticket_id: str) -> Optional[TicketResponse]:
        for ticket in self._tickets:
            if ticket.id == ticket_id:
                return ticket
        return None

    @staticmethod
    def _find_comment(ticket: TicketResponse, comment_id: str) -> Optional[CommentResponse]:
        for comment in ticket.comments:
            if comment.id == comment_id:
                return comment
        return None

    # ==================== TICKET OPERATIONS ====================

    def get_all_tickets(self, filters=None) -> List[TicketResponse]:
        filters = self.coerce_filters(filters)
        with self._lock:
            tickets = list(self._tickets)

            if filters.status:
                tickets = [t for t in tickets if t.status == filters.status]
            if filters.exclude_status:
                tickets = [t for t in tickets if t.status != filters.exclude_status]
            if filters.priority:
                tickets = [t for t in tickets if t.priority == filters.priority]
            if filters.route:
                needle = filters.route.lower()
                tickets = [t for t in tickets if needle in (t.route or "").lower()]

            # Ties on created_at fall back to the ID, as in the SQL backends.
            tickets.sort(key=lambda t: (t.created_at, t.id), reverse=True)
            return [t.model_copy(deep=True) for t in tickets]

    def get_ticket(self, ticket_id: str) -> Optional[TicketResponse]:
        with self._lock:
            ticket = self._find(ticket_id)
            return ticket.model_copy(deep=True) if ticket else None

    def create_ticket(self, data) -> TicketResponse:
        data = self.coerce_ticket_create(data)

        with self._mutation():
            now = self.now()
            if data.id is not None:
                if self._find(data.id):
                    raise DuplicateTicket(data.id)
                ticket_id = data.id
            else:
                ticket_id = self.generate_ticket_id()
                while self._find(ticket_id):
                    ticket_id = self.generate_ticket_id()

            created_at, updated_at = self.creation_times(data, now)
            ticket = TicketResponse(
                id=ticket_id,
                route=data.route,
                f12_errors=data.f12_errors,
                server_errors=data.server_errors,
                description=data.description,
                status=data.status,
                priority=data.priority,
                namespace=data.namespace,
                related_tickets=list(data.related_tickets),
                swarm_actions=[
                    SwarmActionResponse(
                        timestamp=ensure_utc(action.timestamp) if action.timestamp else now,
                        action=action.action,
                        result=action.result,
                    )
                    for action in data.swarm_actions
                ],
                comments=[
                    CommentResponse(
                        id=comment.id or self.generate_comment_id(),
                        timestamp=ensure_utc(comment.timestamp) if comment.timestamp else now,
                        type=comment.type,
                        author=comment.author,
                        content=comment.content,
                        metadata=dict(comment.metadata),
                        edited_at=ensure_utc(comment.edited_at) if comment.edited_at else None,
                    )
                    for comment in data.comments
                ],
                created_at=created_at,
                updated_at=updated_at,
            )

            self._tickets.append(ticket)
            self._save()
            created = ticket.model_copy(deep=True)

        logger.info(f"Created ticket {created.id}")
        return created

    def update_ticket(self, ticket_id: str, updates) -> Optional[TicketResponse]:
        changes = self.coerce_ticket_update(updates).changes()

        with self._mutation():
            ticket = self._find(ticket_id)
            if ticket is None:
                return None

            for field, value in changes.items():
                setattr(ticket, field, list(value) if field == "related_tickets" else value)

            ticket.updated_at = self.now()
            self._save()
            return ticket.model_copy(deep=True)

    def delete_ticket(self, ticket_id: str) -> bool:
        with self._mutation():
            ticket = self._find(ticket_id)
            if ticket is None:
                return False

            self._tickets.remove(ticket)
            self._save()

        logger.info(f"Deleted ticket {ticket_id}")
        return True

    # ==================== SWARM ACTION OPERATIONS ====================

    def add_swarm_action(self, ticket_id: str, action) -> Optional[TicketResponse]:
        action = self.coerce_action(action)

        with self._mutation():
            ticket = self._find(ticket_id)
            if ticket is None:
                return None

            now = self.now()
            ticket.swarm_actions.append(SwarmActionResponse(timestamp=now, action=action.action, result=action.result))
            ticket.updated_at = now

            self._save()
            return ticket.model_copy(deep=True)

    # ==================== COMMENT OPERATIONS ====================

    def add_comment(self, ticket_id: str, data) -> Optional[CommentResponse]:
        data = self.coerce_comment_create(data)

        with self._mutation():
            ticket = self._find(ticket_id)
            if ticket is None:
                return None

            now = self.now()
            comment = CommentResponse(
                id=self.generate_comment_id(),
                timestamp=now,
                type=data.type,
                author=data.author,
                content=data.content,
                metadata=dict(data.metadata),
            )
            ticket.comments.append(comment)
            ticket.updated_at = now

            self._save()
            return comment.model_copy(deep=True)

    def get_comments(self, ticket_id: str) -> Optional[List[CommentResponse]]:
        with self._lock:
            ticket = self._find(ticket_id)
            if ticket is None:
                return None
            return [comment.model_copy(deep=True) for comment in ticket.comments]

    def update_comment(self, ticket_id: str, comment_id: str, updates) -> Optional[CommentResponse]:
        updates = self.coerce_comment_update(updates)

        with self._mutation():
            ticket = self._find(ticket_id)
            if ticket is None:
                return None
            comment = self._find_comment(ticket, comment_id)
            if comment is None:
                return None

            now = self.now()
            if updates.content is not None:
                comment.content = updates.content
            if updates.metadata is not None:
                comment.metadata = {**comment.metadata, **updates.metadata}
            comment.edited_at = now
            ticket.updated_at = now

            self._save()
            return comment.model_copy(deep=True)

    def delete_comment(self, ticket_id: str, comment_id: str) -> bool:
        with self._mutation():
            ticket = self._find(ticket_id)
            if ticket is None:
                return False
            comment = self._find_comment(ticket, comment_id)
            if comment is None:
                return False

            ticket.comments.remove(comment)
            ticket.updated_at = self.now()
            self._save()
            return True

    # ==================== STATS OPERATIONS ====================

    def get_stats(self) -> TicketStats:
        status_counts = {}
        priority_counts = {}
        with self._lock:
            for ticket in self._tickets:
                status_counts[ticket.status] = status_counts.get(ticket.status, 0) + 1
                if ticket.priority:
                    priority_counts[ticket.priority] = priority_counts.get(ticket.priority, 0) + 1
            total = len(self._tickets)
        return TicketStats.from_counts(total, status_counts, priority_counts)

    # ==================== BUG REPORT GUARD ====================

    def _authenticate_api_key(self, api_key: str, now: datetime) -> None:
        # No key table here, so no key can be valid.
        raise InvalidApiKey()

    def _prune_rate_limits(self, cutoff: datetime) -> None:
        self.rate_limiter.prune(cutoff)

    def _consume_rate_limit(self, identifier: str, window: datetime, limit: int, now: datetime) -> None:
        self.rate_limiter.consume(identifier, window, limit, now)
