from fastapi import APIRouter, Depends
from apkportal.core.dependencies import get_contact_service, get_optional_user, require_admin
from apkportal.modules.contact.schemas import (
    ContactMessageCreate, ContactMessageResponse, ContactStatusUpdate, MessageStatus,
)
from apkportal.modules.contact.service import ContactService
from typing import List, Dict, Optional

router = APIRouter(prefix="/contact", tags=["contact"])


@router.post("", response_model=ContactMessageResponse, status_code=201)
async def submit_message(
    message_data: ContactMessageCreate,
    user: Optional[Dict] = Depends(get_optional_user),
    service: ContactService = Depends(get_contact_service),
):
    """Submit the contact form; signed-in users are linked to their message"""
    return service.submit_message(message_data, user=user)


@router.get("", response_model=List[ContactMessageResponse])
async def list_messages(
    status: Optional[MessageStatus] = None,
    limit: int = 20,
    offset: int = 0,
    user_data: Dict = Depends(require_admin),
    service: ContactService = Depends(get_contact_service),
):
    return service.list_messages(status=status, limit=limit, offset=offset)


@router.patch("/{message_id}", response_model=ContactMessageResponse)
async def update_status(
    message_id: str,
    body: ContactStatusUpdate,
    user_data: Dict = Depends(require_admin),
    service: ContactService = Depends(get_contact_service),
):
    return service.update_status(message_id, body.status)
