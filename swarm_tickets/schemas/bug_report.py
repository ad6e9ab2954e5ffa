from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from swarm_tickets.schemas.ticket import SwarmActionCreate, TicketCreate

BUG_REPORT_ACTION = "bug-report-submitted"
BUG_REPORT_MESSAGE = "Bug report received. Thank you!"


class BugReportCreate(BaseModel):
    """Restricted ticket request coming from untrusted end users."""

    model_config = ConfigDict(populate_by_name=True)

    location: Optional[str] = Field(None, description="Page the user was on.")
    route: Optional[str] = Field(None, description="Alternative spelling of location.")
    client_error: Optional[str] = Field(None, alias="clientError", description="Captured console error.")
    f12_errors: Optional[str] = Field(None, alias="f12Errors")
    description: Optional[str] = Field(None, max_length=10000)
    user_agent: Optional[str] = Field(None, alias="userAgent")
    ip: Optional[str] = Field(None, description="Network address of the submitter, filled in by the route layer.")

    def to_ticket(self, submitted_at: datetime) -> TicketCreate:
        return TicketCreate(
            route=self.location or self.route or "unknown",
            f12_errors=self.client_error or self.f12_errors or "",
            server_errors="",
            description=self.description or "",
            priority=None,
            swarm_actions=[
                SwarmActionCreate(
                    action=BUG_REPORT_ACTION,
                    result=f"Bug report submitted via widget. User agent: {self.user_agent or 'unknown'}",
                    timestamp=submitted_at,
                )
            ],
        )


class BugReportReceipt(BaseModel):
    """All an anonymous submitter gets to see of the ticket they created."""

    id: str
    status: str = "submitted"
    message: str = BUG_REPORT_MESSAGE
