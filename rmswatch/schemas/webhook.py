"""
Current RMS webhook payload.

Current RMS posts {"action": {...}} where the action carries the subject
(opportunity) and the member who made the change. Only the fields used
here are declared; everything else is tolerated and kept in raw_payload.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from rmswatch.schemas.events import CamelModel


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


class WebhookMember(_Lenient):
    id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None


class WebhookSubject(_Lenient):
    id: Optional[int] = None
    name: Optional[str] = None
    opportunity_status: Optional[str] = None
    organisation_id: Optional[int] = None
    organisation_name: Optional[str] = None


class WebhookAction(_Lenient):
    id: Optional[int] = None
    subject_id: Optional[int] = None
    subject_type: Optional[str] = None
    member_id: Optional[int] = None
    action_type: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    member: Optional[WebhookMember] = None
    subject: Optional[WebhookSubject] = None


class WebhookPayload(_Lenient):
    action: Optional[WebhookAction] = None


class WebhookAck(CamelModel):
    success: bool = True
    event_id: str
    message: str = "Webhook received and processed"
