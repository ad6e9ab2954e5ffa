from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from swarm_tickets.api.deps import get_storage
from swarm_tickets.schemas.bug_report import BugReportCreate, BugReportReceipt
from swarm_tickets.storage.base import StorageAdapter

router = APIRouter(prefix="/api", tags=["Bug Reports"])


@router.post("/bug-report", response_model=BugReportReceipt, status_code=status.HTTP_201_CREATED)
def submit_bug_report(
    report: BugReportCreate,
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    storage: StorageAdapter = Depends(get_storage),
):
    """
    Public endpoint for the embeddable widget.

    Anonymous submitters are limited per network address; an API key gets a
    larger quota. The response only carries the new ticket's ID.
    """
    client_ip = request.client.host if request.client else None
    report = report.model_copy(update={"ip": client_ip})
    return storage.create_bug_report(report, api_key=x_api_key or None)
