"""SQLAlchemy implementation of the storage contract.

Shared by the SQLite and Supabase adapters, which only differ in how they
build the engine, provision the schema and spell an upsert. Every mutation
runs in one transaction: a failure part way through leaves nothing behind.
"""
import logging
from abc import abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import func, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from swarm_tickets.core.clock import Clock
from swarm_tickets.core.db import Base
from swarm_tickets.core.errors import DuplicateTicket, InvalidApiKey
from swarm_tickets.models.ticket import ApiKey, Comment, RateLimit, SwarmAction, Ticket, TicketRelation
from swarm_tickets.schemas.api_key import ApiKeyCreated, ApiKeyResponse
from swarm_tickets.schemas.ticket import (
    CommentResponse,
    SwarmActionResponse,
    TicketResponse,
    TicketStats,
)
from swarm_tickets.storage.base import StorageAdapter
from swarm_tickets.storage.rate_limit import exceeded

logger = logging.getLogger("swarm-tickets.storage.sql")

TABLE_NAMES = tuple(Base.metadata.tables)


def escape_like(value: str, escape: str = "\\") -> str:
    """Make ``%`` and ``_`` match literally inside a LIKE pattern."""
    return (
        value.replace(escape, escape + escape)
        .replace("%", escape + "%")
        .replace("_", escape + "_")
    )


def comment_to_schema(row: Comment) -> CommentResponse:
    return CommentResponse(
        id=row.id,
        timestamp=row.timestamp,
        type=row.type,
        author=row.author,
        content=row.content,
        metadata=dict(row.metadata_info or {}),
        edited_at=row.edited_at,
    )


def ticket_to_schema(row: Ticket) -> TicketResponse:
    return TicketResponse(
        id=row.id,
        route=row.route,
        f12_errors=row.f12_errors,
        server_errors=row.server_errors,
        description=row.description,
        status=row.status,
        priority=row.priority,
        namespace=row.namespace,
        related_tickets=[relation.related_ticket_id for relation in row.relations],
        swarm_actions=[
            SwarmActionResponse(timestamp=action.timestamp, action=action.action, result=action.result)
            for action in row.swarm_actions
        ],
        comments=[comment_to_schema(comment) for comment in row.comments],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SQLAdapter(StorageAdapter):
    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    # ==================== LIFECYCLE ====================

    @abstractmethod
    def _create_engine(self) -> Engine:
        """Build the engine, raising StorageUnavailable if the driver is missing."""

    @abstractmethod
    def _insert(self, table):
        """Dialect-specific INSERT construct supporting ``on_conflict_do_update``."""

    def _provision_schema(self, engine: Engine) -> None:
        Base.metadata.create_all(bind=engine, checkfirst=True)

    def initialize(self) -> None:
        if self.engine is None:
            self.engine = self._create_engine()
            self._session_factory = sessionmaker(
                bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
            )
        self._provision_schema(self.engine)
        logger.info(f"{self.kind} storage ready ({self.engine.url.render_as_string(hide_password=True)})")

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            self._session_factory = None

    def missing_tables(self) -> List[str]:
        existing = set(inspect(self.engine).get_table_names())
        return [name for name in TABLE_NAMES if name not in existing]

    def ping(self) -> bool:
        with self._session() as db:
            db.execute(text("SELECT 1"))
        return True

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise RuntimeError(f"{type(self).__name__}.initialize() has not been called")
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        with self._session() as db:
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise

    # ==================== TICKET OPERATIONS ====================

    def get_all_tickets(self, filters=None) -> List[TicketResponse]:
        filters = self.coerce_filters(filters)

        with self._session() as db:
            query = db.query(Ticket)

            if filters.status:
                query = query.filter(Ticket.status == filters.status)
            if filters.exclude_status:
                query = query.filter(Ticket.status != filters.exclude_status)
            if filters.priority:
                query = query.filter(Ticket.priority == filters.priority)
            if filters.route:
                query = query.filter(Ticket.route.ilike(f"%{escape_like(filters.route)}%", escape="\\"))

            rows = query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()
            return [ticket_to_schema(row) for row in rows]

    def get_ticket(self, ticket_id: str) -> Optional[TicketResponse]:
        with self._session() as db:
            row = db.get(Ticket, ticket_id)
            return ticket_to_schema(row) if row else None

    def create_ticket(self, data) -> TicketResponse:
        data = self.coerce_ticket_create(data)
        now = self.now()
        created_at, updated_at = self.creation_times(data, now)

        with self._transaction() as db:
            if data.id is not None:
                if db.get(Ticket, data.id) is not None:
                    raise DuplicateTicket(data.id)
                ticket_id = data.id
            else:
                ticket_id = self.generate_ticket_id()
                while db.get(Ticket, ticket_id) is not None:
                    ticket_id = self.generate_ticket_id()

            row = Ticket(
                id=ticket_id,
                route=data.route,
                f12_errors=data.f12_errors,
                server_errors=data.server_errors,
                description=data.description,
                status=data.status,
                priority=data.priority,
                namespace=data.namespace,
                created_at=created_at,
                updated_at=updated_at,
            )
            row.relations = [TicketRelation(related_ticket_id=related) for related in data.related_tickets]
            row.swarm_actions = [
                SwarmAction(timestamp=action.timestamp or now, action=action.action, result=action.result)
                for action in data.swarm_actions
            ]
            row.comments = [
                Comment(
                    id=comment.id or self.generate_comment_id(),
                    timestamp=comment.timestamp or now,
                    type=comment.type,
                    author=comment.author,
                    content=comment.content,
                    metadata_info=dict(comment.metadata),
                    edited_at=comment.edited_at,
                )
                for comment in data.comments
            ]
            db.add(row)
            db.flush()
            ticket = ticket_to_schema(row)

        logger.info(f"Created ticket {ticket.id}")
        return ticket

    def update_ticket(self, ticket_id: str, updates) -> Optional[TicketResponse]:
        changes = self.coerce_ticket_update(updates).changes()

        with self._transaction() as db:
            row = db.get(Ticket, ticket_id)
            if row is None:
                return None

            related = changes.pop("related_tickets", None)
            for field, value in changes.items():
                setattr(row, field, value)

            if related is not None:
                # Flush the deletes before inserting so re-adding an existing
                # pair does not trip the unique constraint.
                row.relations.clear()
                db.flush()
                row.relations.extend(TicketRelation(related_ticket_id=related_id) for related_id in related)

            row.updated_at = self.now()
            db.flush()
            return ticket_to_schema(row)

    def delete_ticket(self, ticket_id: str) -> bool:
        with self._transaction() as db:
            row = db.get(Ticket, ticket_id)
            if row is None:
                return False
            db.delete(row)

        logger.info(f"Deleted ticket {ticket_id}")
        return True

    # ==================== SWARM ACTION OPERATIONS ====================

    def add_swarm_action(self, ticket_id: str, action) -> Optional[TicketResponse]:
        action = self.coerce_action(action)

        with self._transaction() as db:
            row = db.get(Ticket, ticket_id)
            if row is None:
                return None

            now = self.now()
            row.swarm_actions.append(SwarmAction(timestamp=now, action=action.action, result=action.result))
            row.updated_at = now
            db.flush()
            return ticket_to_schema(row)

    # ==================== COMMENT OPERATIONS ====================

    def add_comment(self, ticket_id: str, data) -> Optional[CommentResponse]:
        data = self.coerce_comment_create(data)

        with self._transaction() as db:
            row = db.get(Ticket, ticket_id)
            if row is None:
                return None

            now = self.now()
            comment = Comment(
                id=self.generate_comment_id(),
                timestamp=now,
                type=data.type,
                author=data.author,
                content=data.content,
                metadata_info=dict(data.metadata),
            )
            row.comments.append(comment)
            row.updated_at = now
            db.flush()
            return comment_to_schema(comment)

    def get_comments(self, ticket_id: str) -> Optional[List[CommentResponse]]:
        with self._session() as db:
            row = db.get(Ticket, ticket_id)
            if row is None:
                return None
            return [comment_to_schema(comment) for comment in row.comments]

    def update_comment(self, ticket_id: str, comment_id: str, updates) -> Optional[CommentResponse]:
        updates = self.coerce_comment_update(updates)

        with self._transaction() as db:
            row = db.get(Ticket, ticket_id)
            comment = self._find_comment(row, comment_id)
            if comment is None:
                return None

            now = self.now()
            if updates.content is not None:
                comment.content = updates.content
            if updates.metadata is not None:
                # Reassign so the JSON column registers the change.
                comment.metadata_info = {**(comment.metadata_info or {}), **updates.metadata}
            comment.edited_at = now
            row.updated_at = now
            db.flush()
            return comment_to_schema(comment)

    def delete_comment(self, ticket_id: str, comment_id: str) -> bool:
        with self._transaction() as db:
            row = db.get(Ticket, ticket_id)
            comment = self._find_comment(row, comment_id)
            if comment is None:
                return False

            row.comments.remove(comment)
            row.updated_at = self.now()
            return True

    @staticmethod
    def _find_comment(row: Optional[Ticket], comment_id: str) -> Optional[Comment]:
        if row is None:
            return None
        for comment in row.comments:
            if comment.id == comment_id:
                return comment
        return None

    # ==================== STATS OPERATIONS ====================

    def get_stats(self) -> TicketStats:
        with self._session() as db:
            total = db.query(func.count(Ticket.id)).scalar() or 0
            status_counts = dict(
                db.query(Ticket.status, func.count(Ticket.id)).group_by(Ticket.status).all()
            )
            priority_counts = dict(
                db.query(Ticket.priority, func.count(Ticket.id))
                .filter(Ticket.priority.isnot(None))
                .group_by(Ticket.priority)
                .all()
            )
        return TicketStats.from_counts(total, status_counts, priority_counts)

    # ==================== BUG REPORT GUARD ====================

    def _authenticate_api_key(self, api_key: str, now: datetime) -> None:
        with self._transaction() as db:
            record = db.query(ApiKey).filter(ApiKey.key == api_key, ApiKey.enabled.is_(True)).first()
            if record is None:
                raise InvalidApiKey()
            record.last_used = now

    def _prune_rate_limits(self, cutoff: datetime) -> None:
        with self._transaction() as db:
            db.query(RateLimit).filter(RateLimit.window_start < cutoff).delete(synchronize_session=False)

    def rate_limit_upsert(self, identifier: str, window: datetime, limit: int):
        """
        Count one request in a single statement.

        The first request inserts the window row; later ones increment it
        only while it is under ``limit``, so concurrent submitters cannot
        overshoot it. A row count of zero means the window is full.
        """
        table = RateLimit.__table__
        upsert = self._insert(table).values(identifier=identifier, window_start=window, request_count=1)
        return upsert.on_conflict_do_update(
            index_elements=[table.c.identifier, table.c.window_start],
            set_={"request_count": table.c.request_count + 1},
            where=table.c.request_count < limit,
        )

    def _consume_rate_limit(self, identifier: str, window: datetime, limit: int, now: datetime) -> None:
        with self._transaction() as db:
            result = db.execute(self.rate_limit_upsert(identifier, window, limit))
            if result.rowcount == 0:
                raise exceeded(identifier, limit, window, now)

    # ==================== API KEY MANAGEMENT ====================

    def create_api_key(self, name: Optional[str] = None) -> ApiKeyCreated:
        key = self.generate_api_key()
        now = self.now()

        with self._transaction() as db:
            db.add(ApiKey(key=key, name=name, created_at=now, enabled=True))

        logger.info(f"Created API key {name or '(unnamed)'}")
        return ApiKeyCreated(key=key, name=name, created_at=now)

    def list_api_keys(self) -> List[ApiKeyResponse]:
        with self._session() as db:
            return [
                ApiKeyResponse(
                    id=record.id,
                    name=record.name,
                    created_at=record.created_at,
                    last_used=record.last_used,
                    enabled=record.enabled,
                )
                for record in db.query(ApiKey).order_by(ApiKey.id).all()
            ]

    def revoke_api_key(self, key: str) -> bool:
        with self._transaction() as db:
            record = db.query(ApiKey).filter(ApiKey.key == key).first()
            if record is None:
                return False
            record.enabled = False

        logger.info(f"Revoked API key {key[:8]}...")
        return True
