"""Enumerations shared by the session state and the response contract."""

import enum


class ConversationStage(str, enum.Enum):
    """Macro-stage of a booking conversation.

    Transitions:
        welcome -> info_collection             (first identity message)
        info_collection -> sign_in | sign_up   (email confirmed, account looked up)
        sign_in -> info_collection             (one-time code verified)
        info_collection | sign_up -> slot_selection  (identity complete)
        slot_selection -> confirmation -> completed
    """

    WELCOME = "welcome"
    INFO_COLLECTION = "info_collection"
    SIGN_IN = "sign_in"
    SIGN_UP = "sign_up"
    SLOT_SELECTION = "slot_selection"
    CONFIRMATION = "confirmation"
    COMPLETED = "completed"


class Action(str, enum.Enum):
    """Action tag carried by every ``StructuredResponse``."""

    SHOW_WELCOME = "show_welcome"
    NEED_INFO = "need_info"
    FIND_SLOTS = "find_slots"
    SIGN_IN = "sign_in"
    SIGN_UP = "sign_up"
    SEND_EMAIL_SUMMARY = "send_email_summary"
    ROUTE_TO_HUMAN = "route_to_human"
    CREATE = "create"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    CONFIRMATION = "confirmation"


class OutOfScopeCategory(str, enum.Enum):
    """Request categories that must be routed to a human.

    The declared order doubles as the tie-break when two categories reach
    the same confidence.  ``OUT_OF_SCOPE`` is never produced by the
    classifier; it labels operational handoffs (e.g. email delivery failure).
    """

    JAILBREAK_OR_SECURITY = "jailbreak_or_security"
    SENSITIVE_HEALTH = "sensitive_health"
    PERSONAL_DATA = "personal_data"
    POLICY_OR_LEGAL = "policy_or_legal"
    PRICING_UNCERTAIN = "pricing_uncertain"
    OUT_OF_SCOPE = "out_of_scope"


class AuthStatus(str, enum.Enum):
    REQUIRED = "required"
    IN_PROGRESS = "in_progress"
    VERIFIED = "verified"


class PhoneRejection(str, enum.Enum):
    """Why a phone-like string could not be normalised."""

    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    WRONG_TYPE = "wrong_type"
    WRONG_COUNTRY = "wrong_country"
    INVALID_FORMAT = "invalid_format"


class EmailRejection(str, enum.Enum):
    INVALID_FORMAT = "invalid_format"
    TOO_LONG = "too_long"
    BLOCKED_DOMAIN = "blocked_domain"
