"""Booking-assistant constants shared across the SDK.

The clinic address and timezone are echoed verbatim in every
``StructuredResponse``.  Thresholds that operations staff may want to tune
can be overridden via environment variables, following the same pattern as
the server settings.
"""

import os

# Fixed constants echoed in every response.
CLINIC_ADDRESS = "Cité 109, Daboussy El Achour, Alger"
CLINIC_TIMEZONE = "Africa/Algiers"

# Human-staffed channel offered on handoff.
# Overridable via CLINIC_PHONE_E164 / CLINIC_EMAIL env vars.
CLINIC_PHONE_E164 = os.getenv("CLINIC_PHONE_E164", "+213555000000")
CLINIC_EMAIL = os.getenv("CLINIC_EMAIL", "contact@nova-rdv.dz")
CLINIC_BUSINESS_HOURS = os.getenv(
    "CLINIC_BUSINESS_HOURS", "08:00-18:00, Dimanche à Jeudi"
)

# --- Phone numbering plan (Algeria) ---
COUNTRY_CALLING_CODE = "213"
NATIONAL_TRUNK_PREFIX = "0"
NATIONAL_NUMBER_LENGTH = 9
# Leading digits of national mobile numbers (Ooredoo 5, Mobilis 6, Djezzy 7).
MOBILE_PREFIXES: tuple[str, ...] = ("5", "6", "7")

# --- Session lifecycle ---
# Sessions idle longer than this are evicted by the sweep.
SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", "30"))
# Conversation history entries kept per session (oldest dropped first).
MAX_HISTORY_ENTRIES = 50

# --- Authentication ---
OTP_CODE_LENGTH = 6
MAX_OTP_ATTEMPTS = int(os.getenv("MAX_OTP_ATTEMPTS", "3"))

# --- Out-of-scope escalation policy ---
HANDOFF_CONFIDENCE_THRESHOLD = float(os.getenv("HANDOFF_CONFIDENCE_THRESHOLD", "0.8"))
# Sessions with at least this many prior out-of-scope messages always escalate.
MAX_OUT_OF_SCOPE_ATTEMPTS = 2

# Seconds before an auth/email collaborator call is abandoned.
COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "10"))

# Field identifiers used in ``missing_fields`` and ``FieldError.field``.
FIELD_NAME = "patient.name"
FIELD_PHONE = "patient.phone_e164"
FIELD_EMAIL = "patient.email"
FIELD_CONSENT = "consent.data_processing"

# Short keys used by the session state and the prompt catalog.
FIELD_KEYS: dict[str, str] = {
    "name": FIELD_NAME,
    "phone": FIELD_PHONE,
    "email": FIELD_EMAIL,
}

DEFAULT_REQUIRED_FIELDS: tuple[str, ...] = ("name", "phone", "email")

# Sections listed in the email-summary payload.
EMAIL_SUMMARY_SECTIONS: list[str] = [
    "appointment_details",
    "conversation_summary",
    "cancellation_link",
    "clinic_contact",
]
