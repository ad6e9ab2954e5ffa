from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TicketStatusEnum(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    FIXED = "fixed"
    CLOSED = "closed"


class TicketPriorityEnum(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CommentTypeEnum(str, Enum):
    HUMAN = "human"
    AI = "ai"


# Fields update_ticket will touch; everything else in an update payload is ignored.
UPDATABLE_FIELDS = (
    "status",
    "priority",
    "related_tickets",
    "namespace",
    "description",
    "f12_errors",
    "server_errors",
    "route",
)

# Fields an explicit null clears instead of being ignored.
CLEARABLE_FIELDS = ("priority", "namespace")


def normalize_status(value: Any) -> Any:
    """Fold common spellings (``In Progress``, ``in_progress``) onto the enum values."""
    if isinstance(value, str):
        return value.strip().lower().replace("_", "-").replace(" ", "-")
    return value


def normalize_priority(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip().lower()
        return value or None
    return value


def dedupe_ids(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def upgrade_legacy_ticket(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a ticket dict written by older releases up to the current shape.

    Older files have no ``comments`` array and may record swarm actions as
    bare strings. String actions take the ticket's creation time.
    """
    ticket = dict(raw)
    created_at = ticket.get("createdAt") or ticket.get("created_at")
    actions = []
    for action in ticket.get("swarmActions") or ticket.get("swarm_actions") or []:
        if isinstance(action, str):
            actions.append({"action": action, "result": None, "timestamp": created_at})
        else:
            action = dict(action)
            if not action.get("timestamp"):
                action["timestamp"] = created_at
            actions.append(action)
    ticket.pop("swarm_actions", None)
    ticket["swarmActions"] = actions
    if ticket.get("comments") is None:
        ticket["comments"] = []
    if ticket.get("relatedTickets") is None and ticket.get("related_tickets") is None:
        ticket["relatedTickets"] = []
    return ticket


class SchemaModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)


class SwarmActionCreate(SchemaModel):
    action: str = Field(..., description="What the swarm did.")
    result: Optional[str] = Field(None, description="Outcome of the action, if known.")
    timestamp: Optional[datetime] = Field(None, description="Only honoured when replaying history at creation time.")


class SwarmActionResponse(SchemaModel):
    timestamp: datetime
    action: str
    result: Optional[str] = None


class CommentCreate(SchemaModel):
    id: Optional[str] = Field(None, description="Only honoured when replaying history at creation time.")
    type: CommentTypeEnum = Field(CommentTypeEnum.HUMAN, description="Whether a person or an agent wrote it.")
    author: str = Field("anonymous", description="Display name of the author.")
    content: str = Field("", description="Comment body.")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Caller-owned key/value data.")
    timestamp: Optional[datetime] = Field(None, description="Only honoured when replaying history at creation time.")
    edited_at: Optional[datetime] = Field(None, alias="editedAt")

    @field_validator("author", mode="before")
    @classmethod
    def default_author(cls, value):
        return value or "anonymous"

    @field_validator("content", mode="before")
    @classmethod
    def default_content(cls, value):
        return value if value is not None else ""

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, value):
        return value if value is not None else {}


class CommentUpdate(SchemaModel):
    content: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, description="Merged into the existing metadata.")


class CommentResponse(SchemaModel):
    id: str
    timestamp: datetime
    type: CommentTypeEnum
    author: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    edited_at: Optional[datetime] = Field(None, alias="editedAt")


class TicketCreate(SchemaModel):
    id: Optional[str] = Field(None, description="Explicit ID, used by migration to preserve identity.")
    route: str = Field("", description="Where the problem shows up, usually a URL path.")
    f12_errors: str = Field("", alias="f12Errors", description="Browser console output.")
    server_errors: str = Field("", alias="serverErrors", description="Server console output.")
    description: str = Field("", description="Free-form description.")
    status: TicketStatusEnum = Field(TicketStatusEnum.OPEN)
    priority: Optional[TicketPriorityEnum] = None
    namespace: Optional[str] = Field(None, description="Where a fix was applied.")
    related_tickets: List[str] = Field(default_factory=list, alias="relatedTickets")
    swarm_actions: List[SwarmActionCreate] = Field(default_factory=list, alias="swarmActions")
    comments: List[CommentCreate] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @field_validator("route", "f12_errors", "server_errors", "description", mode="before")
    @classmethod
    def default_text(cls, value):
        return value if value is not None else ""

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        if value is None:
            return TicketStatusEnum.OPEN
        return normalize_status(value)

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, value):
        return normalize_priority(value)

    @field_validator("namespace", mode="before")
    @classmethod
    def blank_namespace(cls, value):
        return value or None

    @field_validator("related_tickets", mode="before")
    @classmethod
    def coerce_related(cls, value):
        return dedupe_ids(value) if value is not None else []

    @field_validator("swarm_actions", mode="before")
    @classmethod
    def coerce_actions(cls, value):
        if value is None:
            return []
        return [{"action": item} if isinstance(item, str) else item for item in value]

    @field_validator("comments", mode="before")
    @classmethod
    def coerce_comments(cls, value):
        return value if value is not None else []


class TicketUpdate(SchemaModel):
    status: Optional[TicketStatusEnum] = None
    priority: Optional[TicketPriorityEnum] = None
    related_tickets: Optional[List[str]] = Field(None, alias="relatedTickets")
    namespace: Optional[str] = None
    description: Optional[str] = None
    f12_errors: Optional[str] = Field(None, alias="f12Errors")
    server_errors: Optional[str] = Field(None, alias="serverErrors")
    route: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return normalize_status(value)

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, value):
        return normalize_priority(value)

    @field_validator("related_tickets", mode="before")
    @classmethod
    def coerce_related(cls, value):
        return dedupe_ids(value)

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually sent, keyed by attribute name.

        ``None`` only survives for the clearable fields; for the rest it
        means "leave as is".
        """
        data = self.model_dump(exclude_unset=True)
        return {
            field: value
            for field, value in data.items()
            if field in UPDATABLE_FIELDS and (value is not None or field in CLEARABLE_FIELDS)
        }


class TicketResponse(SchemaModel):
    id: str
    route: str = ""
    f12_errors: str = Field("", alias="f12Errors")
    server_errors: str = Field("", alias="serverErrors")
    description: str = ""
    status: TicketStatusEnum = TicketStatusEnum.OPEN
    priority: Optional[TicketPriorityEnum] = None
    namespace: Optional[str] = None
    related_tickets: List[str] = Field(default_factory=list, alias="relatedTickets")
    swarm_actions: List[SwarmActionResponse] = Field(default_factory=list, alias="swarmActions")
    comments: List[CommentResponse] = Field(default_factory=list)
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return normalize_status(value)


class TicketFilters(SchemaModel):
    status: Optional[TicketStatusEnum] = None
    exclude_status: Optional[TicketStatusEnum] = Field(None, alias="excludeStatus")
    priority: Optional[TicketPriorityEnum] = None
    route: Optional[str] = Field(None, description="Case-insensitive substring match.")

    @field_validator("status", "exclude_status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return normalize_status(value) or None

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, value):
        return normalize_priority(value)

    @field_validator("route", mode="before")
    @classmethod
    def blank_route(cls, value):
        return value or None


class StatusCounts(SchemaModel):
    open: int = 0
    in_progress: int = Field(0, alias="inProgress")
    fixed: int = 0
    closed: int = 0


class PriorityCounts(SchemaModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class TicketStats(SchemaModel):
    total: int
    by_status: StatusCounts = Field(default_factory=StatusCounts, alias="byStatus")
    by_priority: PriorityCounts = Field(default_factory=PriorityCounts, alias="byPriority")

    @classmethod
    def from_counts(cls, total: int, status_counts: Dict[str, int], priority_counts: Dict[Optional[str], int]) -> "TicketStats":
        return cls(
            total=total,
            by_status=StatusCounts(
                open=status_counts.get(TicketStatusEnum.OPEN.value, 0),
                in_progress=status_counts.get(TicketStatusEnum.IN_PROGRESS.value, 0),
                fixed=status_counts.get(TicketStatusEnum.FIXED.value, 0),
                closed=status_counts.get(TicketStatusEnum.CLOSED.value, 0),
            ),
            by_priority=PriorityCounts(
                **{priority.value: priority_counts.get(priority.value, 0) for priority in TicketPriorityEnum}
            ),
        )
