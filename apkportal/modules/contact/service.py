from supabase import Client
from apkportal.modules.activities.service import is_local_user_id
from apkportal.modules.contact.schemas import ContactMessageCreate, ContactMessageResponse
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import HTTPException
import logging

logger = logging.getLogger(__name__)


class ContactService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def submit_message(
        self,
        message_data: ContactMessageCreate,
        user: Optional[Dict[str, Any]] = None,
    ) -> ContactMessageResponse:
        user_id = (user or {}).get("id")
        record = message_data.model_dump()
        record["user_id"] = None if is_local_user_id(user_id) else user_id
        record["status"] = "new"
        try:
            result = self.supabase.table("contact_messages").insert(record).execute()
        except Exception as e:
            logger.error(f"Error saving contact message: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to save message")
        logger.info(f"Contact message received from {message_data.email}")
        return ContactMessageResponse(**result.data[0])

    def list_messages(
        self,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[ContactMessageResponse]:
        try:
            query = self.supabase.table("contact_messages").select("*")
            if status:
                query = query.eq("status", status)
            result = query.order("created_at", desc=True)\
                .range(offset, offset + limit - 1)\
                .execute()
            return [ContactMessageResponse(**row) for row in result.data or []]
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    def update_status(self, message_id: str, status: str) -> ContactMessageResponse:
        try:
            result = self.supabase.table("contact_messages")\
                .update({"status": status, "updated_at": datetime.now(timezone.utc).isoformat()})\
                .eq("id", message_id)\
                .execute()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        if not result.data:
            raise HTTPException(status_code=404, detail="Message not found")
        return ContactMessageResponse(**result.data[0])
