from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from swarm_tickets.core.db import Base, UTCDateTime

STATUS_VALUES = ("open", "in-progress", "fixed", "closed")
PRIORITY_VALUES = ("critical", "high", "medium", "low")
COMMENT_TYPES = ("human", "ai")


def _in_list(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(value) for value in values)})"


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        CheckConstraint(_in_list("status", STATUS_VALUES), name="ck_tickets_status"),
        CheckConstraint(f"priority IS NULL OR {_in_list('priority', PRIORITY_VALUES)}", name="ck_tickets_priority"),
        Index("idx_tickets_status", "status"),
        Index("idx_tickets_priority", "priority"),
        Index("idx_tickets_route", "route"),
        Index("idx_tickets_created_at", "created_at"),
    )

    id = Column(String(64), primary_key=True)
    route = Column(Text, nullable=False, default="")
    f12_errors = Column(Text, nullable=False, default="")
    server_errors = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default="open")
    priority = Column(String(20), nullable=True)
    namespace = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    relations = relationship(
        "TicketRelation",
        cascade="all, delete-orphan",
        order_by="TicketRelation.id",
        lazy="selectin",
    )
    swarm_actions = relationship(
        "SwarmAction",
        cascade="all, delete-orphan",
        order_by="SwarmAction.id",
        lazy="selectin",
    )
    comments = relationship(
        "Comment",
        cascade="all, delete-orphan",
        order_by="Comment.pk",
        lazy="selectin",
    )


class TicketRelation(Base):
    """
    One-directional reference from a ticket to another ticket ID.

    The target is not a foreign key: references may outlive the ticket they
    point at, exactly like the ID lists kept by the file backend.
    """
    __tablename__ = "ticket_relations"
    __table_args__ = (
        UniqueConstraint("ticket_id", "related_ticket_id", name="uq_ticket_relations_pair"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(String(64), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    related_ticket_id = Column(String(64), nullable=False)


class SwarmAction(Base):
    __tablename__ = "swarm_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(String(64), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(UTCDateTime, nullable=False)
    action = Column(Text, nullable=False)
    result = Column(Text, nullable=True)


class Comment(Base):
    __tablename__ = "comments"
    __table_args__ = (
        CheckConstraint(_in_list("type", COMMENT_TYPES), name="ck_comments_type"),
    )

    # Surrogate key keeps insertion order; ``id`` is the public identifier.
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True, index=True)
    ticket_id = Column(String(64), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(UTCDateTime, nullable=False)
    type = Column(String(10), nullable=False, default="human")
    author = Column(Text, nullable=False, default="anonymous")
    content = Column(Text, nullable=False, default="")
    metadata_info = Column("metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    edited_at = Column(UTCDateTime, nullable=True)


class ApiKey(Base):
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(128), unique=True, nullable=False, index=True)
    name = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    last_used = Column(UTCDateTime, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)


class RateLimit(Base):
    __tablename__ = "rate_limits"
    __table_args__ = (
        UniqueConstraint("identifier", "window_start", name="uq_rate_limits_window"),
        Index("idx_rate_limits_identifier", "identifier"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    identifier = Column(String(255), nullable=False)
    window_start = Column(UTCDateTime, nullable=False)
    request_count = Column(Integer, nullable=False, default=1)
