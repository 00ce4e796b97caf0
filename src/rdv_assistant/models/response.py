"""StructuredResponse — the contract between the orchestrator and its host.

Every response carries the two clinic constants plus an action tag; the
remaining payloads are optional and action-specific.  The presentation
layer dispatches on ``action`` and never needs to parse ``message``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from rdv_assistant.constants import CLINIC_ADDRESS, CLINIC_TIMEZONE
from rdv_assistant.models.enums import Action, AuthStatus


class PatientPayload(BaseModel):
    name: str | None = None
    phone_e164: str | None = None
    email: str | None = None
    patient_id: str | None = None


class SlotPayload(BaseModel):
    """Appointment slot echoed back on confirmation."""

    start_iso: str
    end_iso: str | None = None
    duration_minutes: int | None = None
    practitioner: str | None = None
    care_type: str | None = None


class AuthPayload(BaseModel):
    has_account: bool | None = None
    method: Literal["email_otp"] | None = None
    status: AuthStatus | None = None
    otp_sent_to: str | None = None
    session_id: str | None = None
    attempts_remaining: int | None = None


class EmailSummaryPayload(BaseModel):
    consent_given: bool = False
    send_to: str
    include_sections: list[str] = Field(default_factory=list)
    language: Literal["fr", "ar", "en"] = "fr"


class Disposition(BaseModel):
    category: str
    reason: str | None = None
    confidence: float | None = None
    detected_patterns: list[str] = Field(default_factory=list)


class ClinicContact(BaseModel):
    phone_e164: str
    email: str
    contact_available: bool = True
    business_hours: str | None = None


class UIElement(BaseModel):
    """Rendering hint for the presentation layer (never markup)."""

    type: str
    label: str
    action: str | None = None
    data: dict[str, Any] | None = None
    style: str | None = None


class FieldError(BaseModel):
    """A candidate value that failed validation during extraction."""

    field: str
    reason: str


class CollectedInfo(BaseModel):
    has_name: bool = False
    has_phone: bool = False
    has_email: bool = False
    is_authenticated: bool = False
    name_attempt_count: int = 0
    phone_attempt_count: int = 0
    email_attempt_count: int = 0
    auth_attempt_count: int = 0


class ConsentFlags(BaseModel):
    data_processing: bool = False
    marketing_emails: bool = False
    transactional_emails: bool = False


class SessionContext(BaseModel):
    """Session echo so clients can reconcile duplicate submissions."""

    session_id: str
    attempt_count: int = 0
    conversation_stage: str
    last_bot_message: str | None = None
    collected_info: CollectedInfo = Field(default_factory=CollectedInfo)
    consent: ConsentFlags = Field(default_factory=ConsentFlags)


class ResponseMetadata(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    response_id: str = Field(default_factory=lambda: uuid.uuid4().hex)


class StructuredResponse(BaseModel):
    """Next structured action for the presentation layer."""

    action: Action
    clinic_address: Literal["Cité 109, Daboussy El Achour, Alger"] = CLINIC_ADDRESS
    timezone: Literal["Africa/Algiers"] = CLINIC_TIMEZONE
    message: str = ""
    patient: PatientPayload | None = None
    slot: SlotPayload | None = None
    auth: AuthPayload | None = None
    email_summary: EmailSummaryPayload | None = None
    disposition: Disposition | None = None
    clinic_contact: ClinicContact | None = None
    missing_fields: list[str] | None = None
    validation_errors: list[FieldError] | None = None
    ui_elements: list[UIElement] | None = None
    session_context: SessionContext | None = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
