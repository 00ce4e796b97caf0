"""Per-conversation state mutated by the orchestrator.

``SessionState`` is a plain mutable dataclass owned by the
:class:`~rdv_assistant.session_store.SessionStore`.  Only the orchestrator
mutates it, and only while holding the session's lock.  API callers never
see it directly; they get the read-only :class:`SessionInfo` view instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel

from rdv_assistant.constants import MAX_HISTORY_ENTRIES
from rdv_assistant.models.enums import ConversationStage


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ExtractedInfo:
    """Candidates and confirmed identity values.

    ``*_rank`` records the evidence rank of the strategy that produced the
    confirmed value; a later candidate only replaces it with an equal or
    higher rank.  Values copied from an authenticated profile get the
    highest rank so nothing extracted from text can override them.
    """

    potential_names: list[str] = field(default_factory=list)
    potential_phones: list[str] = field(default_factory=list)
    potential_emails: list[str] = field(default_factory=list)
    confirmed_name: str | None = None
    confirmed_phone: str | None = None
    confirmed_email: str | None = None
    last_extracted_name: str | None = None
    last_extracted_phone: str | None = None
    last_extracted_email: str | None = None
    name_rank: int = 0
    phone_rank: int = 0
    email_rank: int = 0

    def confirmed(self, key: str) -> str | None:
        return getattr(self, f"confirmed_{key}")


@dataclass
class AuthSubState:
    is_authenticated: bool = False
    # None until an account lookup has succeeded
    account_exists: bool | None = None
    auth_method: Literal["email_otp"] | None = None
    external_session_id: str | None = None
    patient_id: str | None = None
    otp_attempts: int = 0
    last_otp_sent: datetime | None = None
    account_created: bool = False


@dataclass
class Consent:
    """GDPR-style consent record; each flag carries its own timestamp."""

    data_processing: bool = False
    marketing_emails: bool = False
    transactional_emails: bool = False
    data_processing_at: datetime | None = None
    marketing_emails_at: datetime | None = None
    transactional_emails_at: datetime | None = None

    def record(
        self,
        *,
        data_processing: bool | None = None,
        marketing_emails: bool | None = None,
        transactional_emails: bool | None = None,
        at: datetime | None = None,
    ) -> None:
        """Set the given flags, stamping each one that was provided."""
        at = at or utc_now()
        if data_processing is not None:
            self.data_processing = data_processing
            self.data_processing_at = at
        if marketing_emails is not None:
            self.marketing_emails = marketing_emails
            self.marketing_emails_at = at
        if transactional_emails is not None:
            self.transactional_emails = transactional_emails
            self.transactional_emails_at = at

    def as_payload(self) -> dict:
        """Shape expected by ``AuthService.create_patient``."""
        return {
            "data_processing": {
                "consent": self.data_processing,
                "timestamp": _iso(self.data_processing_at),
            },
            "marketing_emails": {
                "consent": self.marketing_emails,
                "timestamp": _iso(self.marketing_emails_at),
            },
            "transactional_emails": {
                "consent": self.transactional_emails,
                "timestamp": _iso(self.transactional_emails_at),
            },
        }


@dataclass
class HandoffState:
    is_pending: bool = False
    reason: str | None = None
    category: str | None = None
    attempts: int = 0


@dataclass
class HistoryEntry:
    role: Literal["user", "bot"]
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    action: str | None = None


@dataclass
class AttemptCounts:
    name: int = 0
    phone: int = 0
    email: int = 0
    total: int = 0


@dataclass
class SessionState:
    """Mutable state of one booking conversation."""

    session_id: str
    stage: ConversationStage = ConversationStage.WELCOME
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    attempts: AttemptCounts = field(default_factory=AttemptCounts)
    collected_fields: set[str] = field(default_factory=set)
    out_of_scope_attempts: int = 0
    extracted: ExtractedInfo = field(default_factory=ExtractedInfo)
    auth: AuthSubState = field(default_factory=AuthSubState)
    consent: Consent = field(default_factory=Consent)
    handoff: HandoffState = field(default_factory=HandoffState)
    welcome_shown: bool = False
    history: list[HistoryEntry] = field(default_factory=list)
    used_prompts: set[str] = field(default_factory=set)
    last_prompt: str | None = None
    summary_sent: bool = False
    # Slot confirmed by the host, as a SlotPayload dump
    appointment: dict | None = None

    def add_history(self, role: Literal["user", "bot"], message: str, action: str | None = None) -> None:
        self.history.append(HistoryEntry(role=role, message=message, action=action))
        # Bounded: keep only the most recent entries
        if len(self.history) > MAX_HISTORY_ENTRIES:
            del self.history[: len(self.history) - MAX_HISTORY_ENTRIES]


class SessionInfo(BaseModel):
    """Public view of session state for API consumers.

    Exposes progress flags only; confirmed personal data stays inside the
    orchestrator.
    """

    session_id: str
    stage: str
    created_at: datetime
    updated_at: datetime
    collected_fields: list[str]
    is_authenticated: bool
    handoff_pending: bool
    out_of_scope_attempts: int
    message_count: int

    @classmethod
    def from_state(cls, state: SessionState) -> SessionInfo:
        return cls(
            session_id=state.session_id,
            stage=state.stage.value,
            created_at=state.created_at,
            updated_at=state.updated_at,
            collected_fields=sorted(state.collected_fields),
            is_authenticated=state.auth.is_authenticated,
            handoff_pending=state.handoff.is_pending,
            out_of_scope_attempts=state.out_of_scope_attempts,
            message_count=len(state.history),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
