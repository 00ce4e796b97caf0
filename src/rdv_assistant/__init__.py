"""rdv_assistant — NOVA RDV booking-assistant SDK.

Public API:
    DialogOrchestrator   — conversation state machine (one per application)
    SessionStore         — in-memory, concurrency-safe session map with TTL sweep
    OutOfScopeClassifier — pattern-based detection of requests for a human
    PromptSelector       — non-repeating clarification questions
    MessageRenderer      — Jinja2 templates for fixed messages
    StructuredResponse   — response contract consumed by the presentation layer

Collaborators:
    AuthService / EmailService         — ABCs the orchestrator depends on
    HttpAuthService / HttpEmailService — httpx implementations
    CollaboratorError                  — raised by implementations on failure

Helpers:
    normalize_mobile     — Algerian mobile number -> ``+213XXXXXXXXX``
    extract_names / extract_emails / extract_phone_candidates
"""

from rdv_assistant.classifier import OutOfScopeClassifier
from rdv_assistant.clients import HttpAuthService, HttpEmailService
from rdv_assistant.extractors import extract_emails, extract_names, extract_phone_candidates
from rdv_assistant.interfaces import AuthService, CollaboratorError, EmailService
from rdv_assistant.models import SessionInfo, StructuredResponse
from rdv_assistant.orchestrator import DialogOrchestrator
from rdv_assistant.phone import normalize_mobile
from rdv_assistant.prompt import MessageRenderer, PromptSelector
from rdv_assistant.session_store import SessionStore

__all__ = [
    "DialogOrchestrator",
    "SessionStore",
    "OutOfScopeClassifier",
    "PromptSelector",
    "MessageRenderer",
    "StructuredResponse",
    "SessionInfo",
    "AuthService",
    "EmailService",
    "HttpAuthService",
    "HttpEmailService",
    "CollaboratorError",
    "normalize_mobile",
    "extract_names",
    "extract_emails",
    "extract_phone_candidates",
]
