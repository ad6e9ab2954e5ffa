"""The storage contract every backend implements.

Exactly one adapter is live per process. It is built by
``swarm_tickets.storage.factory`` at startup and handed to whoever needs it;
nothing in this package keeps a global instance.
"""
import logging
import secrets
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from swarm_tickets.core.clock import Clock, ensure_utc, epoch_millis, utcnow
from swarm_tickets.core.errors import UnsupportedOperation
from swarm_tickets.schemas.api_key import ApiKeyCreated, ApiKeyResponse
from swarm_tickets.schemas.bug_report import BugReportCreate, BugReportReceipt
from swarm_tickets.schemas.ticket import (
    CommentCreate,
    CommentResponse,
    CommentUpdate,
    SwarmActionCreate,
    TicketCreate,
    TicketFilters,
    TicketResponse,
    TicketStats,
    TicketUpdate,
)
from swarm_tickets.storage import rate_limit

logger = logging.getLogger("swarm-tickets.storage")

TICKET_ID_PREFIX = "TKT-"
COMMENT_ID_PREFIX = "CMT-"
API_KEY_PREFIX = "stk_"


def _coerce(model, value):
    if value is None or isinstance(value, model):
        return value
    return model.model_validate(value)


class StorageAdapter(ABC):
    """
    Abstract storage backend.

    Missing tickets and comments are reported as ``None`` (or ``False`` for
    deletes), never raised. Driver and I/O errors propagate unchanged.
    Write inputs accept either the pydantic request model or a plain dict
    with the same fields (camelCase or snake_case).
    """

    kind: str = "abstract"

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utcnow
        self._last_ticket_token = 0
        self._id_lock = threading.Lock()

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    # ==================== LIFECYCLE ====================

    @abstractmethod
    def initialize(self) -> None:
        """Create the underlying storage if absent. Safe to call repeatedly."""

    @abstractmethod
    def close(self) -> None:
        """Release connections. Safe to call repeatedly."""

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def ping(self) -> bool:
        """Cheap liveness check for the health endpoint."""
        return True

    # ==================== TICKETS ====================

    @abstractmethod
    def get_all_tickets(self, filters: Union[TicketFilters, Dict[str, Any], None] = None) -> List[TicketResponse]:
        """Tickets matching ``filters``, newest first."""

    @abstractmethod
    def get_ticket(self, ticket_id: str) -> Optional[TicketResponse]:
        ...

    @abstractmethod
    def create_ticket(self, data: Union[TicketCreate, Dict[str, Any]]) -> TicketResponse:
        """
        Persist a new ticket with any nested relations, actions and comments.

        ``id``, ``created_at`` and ``updated_at`` are normally assigned here;
        values supplied by the caller are kept so a migration can preserve
        identity. A supplied ID that already exists raises DuplicateTicket.
        """

    @abstractmethod
    def update_ticket(self, ticket_id: str, updates: Union[TicketUpdate, Dict[str, Any]]) -> Optional[TicketResponse]:
        """Apply a partial update. ``related_tickets`` replaces the whole set."""

    @abstractmethod
    def delete_ticket(self, ticket_id: str) -> bool:
        ...

    # ==================== SWARM ACTIONS ====================

    @abstractmethod
    def add_swarm_action(self, ticket_id: str, action: Union[SwarmActionCreate, Dict[str, Any]]) -> Optional[TicketResponse]:
        """Append an action stamped now and return the whole ticket."""

    # ==================== COMMENTS ====================

    @abstractmethod
    def add_comment(self, ticket_id: str, data: Union[CommentCreate, Dict[str, Any]]) -> Optional[CommentResponse]:
        ...

    @abstractmethod
    def get_comments(self, ticket_id: str) -> Optional[List[CommentResponse]]:
        """Comments in insertion order, or ``None`` if the ticket is absent."""

    @abstractmethod
    def update_comment(
        self,
        ticket_id: str,
        comment_id: str,
        updates: Union[CommentUpdate, Dict[str, Any]],
    ) -> Optional[CommentResponse]:
        """Replace content and merge metadata (shallow union)."""

    @abstractmethod
    def delete_comment(self, ticket_id: str, comment_id: str) -> bool:
        ...

    # ==================== STATS ====================

    @abstractmethod
    def get_stats(self) -> TicketStats:
        ...

    # ==================== BUG REPORTS ====================

    def create_bug_report(
        self,
        report: Union[BugReportCreate, Dict[str, Any]],
        api_key: Optional[str] = None,
    ) -> BugReportReceipt:
        """
        Accept a bug report from an untrusted submitter.

        Validates the API key when one is given, charges the submitter's
        hourly window, creates a minimal ticket and returns only its ID.

        Raises:
            InvalidApiKey: the key is unknown or revoked
            RateLimitExceeded: the window quota is used up
        """
        report = _coerce(BugReportCreate, report)
        now = self.now()

        if api_key:
            self._authenticate_api_key(api_key, now)

        identifier = rate_limit.resolve_identifier(api_key, report.ip)
        limit = rate_limit.limit_for(api_key)
        window = rate_limit.window_start(now)

        try:
            self._prune_rate_limits(rate_limit.retention_cutoff(now))
        except Exception as exc:
            logger.warning(f"Pruning old rate limit windows failed: {exc}")

        self._consume_rate_limit(identifier, window, limit, now)

        ticket = self.create_ticket(report.to_ticket(now))
        logger.info(f"Bug report accepted as {ticket.id} (identifier={identifier})")
        return BugReportReceipt(id=ticket.id)

    @abstractmethod
    def _authenticate_api_key(self, api_key: str, now: datetime) -> None:
        """Raise InvalidApiKey unless ``api_key`` is enabled; record its use."""

    @abstractmethod
    def _prune_rate_limits(self, cutoff: datetime) -> None:
        ...

    @abstractmethod
    def _consume_rate_limit(self, identifier: str, window: datetime, limit: int, now: datetime) -> None:
        """Check the window against ``limit`` and count this request."""

    # ==================== API KEYS ====================

    def create_api_key(self, name: Optional[str] = None) -> ApiKeyCreated:
        raise UnsupportedOperation(f"API keys are not supported by the {self.kind} storage backend")

    def list_api_keys(self) -> List[ApiKeyResponse]:
        raise UnsupportedOperation(f"API keys are not supported by the {self.kind} storage backend")

    def revoke_api_key(self, key: str) -> bool:
        raise UnsupportedOperation(f"API keys are not supported by the {self.kind} storage backend")

    # ==================== UTILITY METHODS ====================

    def generate_ticket_id(self) -> str:
        """``TKT-<epoch ms>``, strictly increasing per adapter instance."""
        with self._id_lock:
            token = max(epoch_millis(self.now()), self._last_ticket_token + 1)
            self._last_ticket_token = token
        return f"{TICKET_ID_PREFIX}{token}"

    def generate_comment_id(self) -> str:
        return f"{COMMENT_ID_PREFIX}{epoch_millis(self.now())}-{uuid.uuid4().hex[:9]}"

    @staticmethod
    def generate_api_key() -> str:
        return API_KEY_PREFIX + secrets.token_hex(24)

    @staticmethod
    def creation_times(data: TicketCreate, now: datetime):
        """Creation and update stamps for a new ticket, keeping updated >= created."""
        created_at = ensure_utc(data.created_at) if data.created_at else now
        updated_at = ensure_utc(data.updated_at) if data.updated_at else now
        return created_at, max(created_at, updated_at)

    @staticmethod
    def coerce_filters(filters) -> TicketFilters:
        return _coerce(TicketFilters, filters) or TicketFilters()

    @staticmethod
    def coerce_ticket_create(data) -> TicketCreate:
        return _coerce(TicketCreate, data)

    @staticmethod
    def coerce_ticket_update(updates) -> TicketUpdate:
        return _coerce(TicketUpdate, updates) or TicketUpdate()

    @staticmethod
    def coerce_action(action) -> SwarmActionCreate:
        return _coerce(SwarmActionCreate, action)

    @staticmethod
    def coerce_comment_create(data) -> CommentCreate:
        return _coerce(CommentCreate, data) or CommentCreate()

    @staticmethod
    def coerce_comment_update(updates) -> CommentUpdate:
        return _coerce(CommentUpdate, updates) or CommentUpdate()
