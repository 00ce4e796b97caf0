"""Public model re-exports for rdv_assistant.

Consumers should import from ``rdv_assistant.models`` rather than
reaching into sub-modules directly.
"""

# --- Enumerations ---
from rdv_assistant.models.enums import (
    Action,
    AuthStatus,
    ConversationStage,
    EmailRejection,
    OutOfScopeCategory,
    PhoneRejection,
)

# --- Session state ---
from rdv_assistant.models.session import (
    AttemptCounts,
    AuthSubState,
    Consent,
    ExtractedInfo,
    HandoffState,
    HistoryEntry,
    SessionInfo,
    SessionState,
)

# --- Classification ---
from rdv_assistant.models.classification import ClassificationResult

# --- Response contract ---
from rdv_assistant.models.response import (
    AuthPayload,
    ClinicContact,
    CollectedInfo,
    ConsentFlags,
    Disposition,
    EmailSummaryPayload,
    FieldError,
    PatientPayload,
    ResponseMetadata,
    SessionContext,
    SlotPayload,
    StructuredResponse,
    UIElement,
)

# --- Collaborator contracts ---
from rdv_assistant.models.collaborators import (
    AccountLookup,
    AppointmentSummary,
    EmailDelivery,
    PatientCreation,
    PatientProfile,
    SignInCompletion,
    SignInInitiation,
)

__all__ = [
    "Action",
    "AuthStatus",
    "ConversationStage",
    "EmailRejection",
    "OutOfScopeCategory",
    "PhoneRejection",
    "AttemptCounts",
    "AuthSubState",
    "Consent",
    "ExtractedInfo",
    "HandoffState",
    "HistoryEntry",
    "SessionInfo",
    "SessionState",
    "ClassificationResult",
    "AuthPayload",
    "ClinicContact",
    "CollectedInfo",
    "ConsentFlags",
    "Disposition",
    "EmailSummaryPayload",
    "FieldError",
    "PatientPayload",
    "ResponseMetadata",
    "SessionContext",
    "SlotPayload",
    "StructuredResponse",
    "UIElement",
    "AccountLookup",
    "AppointmentSummary",
    "EmailDelivery",
    "PatientCreation",
    "PatientProfile",
    "SignInCompletion",
    "SignInInitiation",
]
