"""Result models returned by the auth and email collaborators.

These mirror the collaborator contracts one-to-one so that HTTP clients
can validate JSON bodies with ``model_validate`` and test doubles can build
results directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class PatientProfile(BaseModel):
    """Patient account as stored by the auth service."""

    id: str
    name: str | None = None
    email: str | None = None
    phone_e164: str | None = None


class AccountLookup(BaseModel):
    exists: bool
    patient: PatientProfile | None = None


class SignInInitiation(BaseModel):
    otp_sent: bool
    expires_at: datetime | None = None
    error: str | None = None


class SignInCompletion(BaseModel):
    success: bool
    patient: PatientProfile | None = None
    external_session_id: str | None = None
    error: str | None = None


class PatientCreation(BaseModel):
    """Either ``patient`` or ``error`` is set."""

    patient: PatientProfile | None = None
    error: str | None = None


class EmailDelivery(BaseModel):
    success: bool
    error: str | None = None


class AppointmentSummary(BaseModel):
    """Data handed to the email service after a booking."""

    patient_name: str
    appointment_date: str
    appointment_time: str
    practitioner: str | None = None
    care_type: str | None = None
    conversation_summary: str | None = None
    cancellation_link: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)
