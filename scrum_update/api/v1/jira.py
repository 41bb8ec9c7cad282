"""
Jira connection endpoints.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from scrum_update.api.deps import get_draft_service, get_jira_connection_service, get_local_user_id
from scrum_update.services.jira_connection import JiraConnectionService, JiraConnectionStatus
from scrum_update.services.jira_draft_service import JiraScrumUpdateDraftService, ScrumUpdateTools

router = APIRouter()


class DisconnectResponse(BaseModel):
    disconnected: bool


class ScrumDraftResponse(BaseModel):
    content: str


@router.get("/jira/status", response_model=JiraConnectionStatus)
async def get_status(
    local_user_id: str = Depends(get_local_user_id),
    service: JiraConnectionService = Depends(get_jira_connection_service),
) -> JiraConnectionStatus:
    """Connection status for the current browser."""
    return await service.get_status(local_user_id)


@router.post("/jira/disconnect", response_model=DisconnectResponse)
async def disconnect(
    local_user_id: str = Depends(get_local_user_id),
    service: JiraConnectionService = Depends(get_jira_connection_service),
) -> DisconnectResponse:
    """Forget the Jira link for the current browser."""
    return DisconnectResponse(disconnected=await service.disconnect(local_user_id))


@router.post("/jira/scrum-draft", response_model=ScrumDraftResponse)
async def generate_scrum_draft(
    draft_service: JiraScrumUpdateDraftService = Depends(get_draft_service),
) -> ScrumDraftResponse:
    """Build a scrum draft from Jira activity without storing it."""
    tools = ScrumUpdateTools(draft_service)
    return ScrumDraftResponse(content=await tools.generate_scrum_update_draft())
