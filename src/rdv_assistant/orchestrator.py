"""DialogOrchestrator — the booking conversation state machine.

Wires the extractors, phone validator, out-of-scope classifier, session
store and prompt selector together with the auth and email collaborators,
and turns each ``(session_id, text)`` pair into a
:class:`~rdv_assistant.models.response.StructuredResponse`.

Stages::

    welcome ──► info_collection ──► sign_in ──► info_collection ─┐
                       │                                         ├──► slot_selection ──► confirmation ──► completed
                       └──────────► sign_up ─────────────────────┘

    route_to_human may be emitted from any stage; it does not change the stage.

Per message (``process_message``):

  1. classify; escalate to a human when the policy fires
  2. first message of the session: welcome, nothing else
  3. ``sign_in`` stage: a 6-digit message is verified as the one-time code
  4. extract and confirm name / phone / email candidates
  5. a confirmed email triggers the account lookup, then sign-in or sign-up
  6. ``sign_up`` stage: an affirmative reply records consent
  7. completion check: ``find_slots`` when nothing is missing, otherwise a
     non-repeating ``need_info`` clarification

Every public coroutine is total: collaborator failures become retry
messages or handoffs, and anything unexpected becomes a ``need_info``
response with ``missing_fields=["error_processing"]``.

Usage::

    orchestrator = DialogOrchestrator(SessionStore(), auth, email)
    response = await orchestrator.process_message("s1", "Je suis Silas")
    response.action            # Action.NEED_INFO
    response.missing_fields    # ["patient.phone_e164", "patient.email"]
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Awaitable, Iterable, TypeVar
from zoneinfo import ZoneInfo

from rdv_assistant.classifier import CATEGORY_REASONS, OutOfScopeClassifier, fold, should_escalate
from rdv_assistant.constants import (
    CLINIC_BUSINESS_HOURS,
    CLINIC_EMAIL,
    CLINIC_PHONE_E164,
    CLINIC_TIMEZONE,
    COLLABORATOR_TIMEOUT_SECONDS,
    DEFAULT_REQUIRED_FIELDS,
    EMAIL_SUMMARY_SECTIONS,
    FIELD_CONSENT,
    FIELD_EMAIL,
    FIELD_KEYS,
    HANDOFF_CONFIDENCE_THRESHOLD,
    MAX_OTP_ATTEMPTS,
    OTP_CODE_LENGTH,
)
from rdv_assistant.extractors import (
    Candidate,
    check_email,
    email_like_tokens,
    extract_email_candidates,
    extract_name_candidates,
    extract_phone_candidates,
)
from rdv_assistant.interfaces import AuthService, EmailService
from rdv_assistant.models.classification import ClassificationResult
from rdv_assistant.models.collaborators import AppointmentSummary, PatientProfile
from rdv_assistant.models.enums import (
    Action,
    AuthStatus,
    ConversationStage,
    EmailRejection,
    OutOfScopeCategory,
)
from rdv_assistant.models.response import (
    AuthPayload,
    ClinicContact,
    CollectedInfo,
    ConsentFlags,
    Disposition,
    EmailSummaryPayload,
    FieldError,
    PatientPayload,
    SessionContext,
    SlotPayload,
    StructuredResponse,
    UIElement,
)
from rdv_assistant.models.session import SessionInfo, SessionState, utc_now
from rdv_assistant.phone import normalize_mobile
from rdv_assistant.prompt import MessageRenderer, PromptSelector
from rdv_assistant.session_store import SessionStore

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# Evidence rank of values copied from an authenticated profile; outranks
# every text strategy.
PROFILE_RANK = 4
# Every valid phone candidate has the same rank: the latest one wins.
PHONE_RANK = 1
# Candidate lists kept per field.
MAX_POTENTIAL_VALUES = 10

ERROR_PROCESSING = "error_processing"

_OTP_RE = re.compile(rf"\d{{{OTP_CODE_LENGTH}}}")
_WHITESPACE_RE = re.compile(r"\s+")
# Matched against folded text.
_AFFIRMATIVE_RE = re.compile(
    r"^\s*(?:oui|ok|okay|d'accord|daccord|j'accepte|j accepte|jaccepte|accepte|"
    r"je suis d'accord|bien sur|yes|i agree|i accept)\b"
)

_STAGES_BEFORE_AUTH = (ConversationStage.WELCOME, ConversationStage.INFO_COLLECTION)
_STAGES_AFTER_IDENTITY = (
    ConversationStage.SLOT_SELECTION,
    ConversationStage.CONFIRMATION,
    ConversationStage.COMPLETED,
)


class DialogOrchestrator:
    """Conversational state machine for appointment booking.

    Args:
        store: session store (one per application)
        auth: account lookup / OTP / account-creation collaborator
        email: email-delivery collaborator
        classifier: out-of-scope classifier; default pattern sets if omitted
        selector: clarification selector; inject one with a seeded
            ``random.Random`` for deterministic tests
        renderer: fixed-message renderer
        required_fields: identity fields needed before slot search, among
            ``name``, ``phone`` and ``email``
        timeout: seconds before a collaborator call is abandoned
        handoff_threshold: classifier confidence that forces a handoff
        max_otp_attempts: wrong codes accepted before a resend is required
    """

    def __init__(
        self,
        store: SessionStore,
        auth: AuthService,
        email: EmailService,
        *,
        classifier: OutOfScopeClassifier | None = None,
        selector: PromptSelector | None = None,
        renderer: MessageRenderer | None = None,
        required_fields: Iterable[str] = DEFAULT_REQUIRED_FIELDS,
        timeout: float = COLLABORATOR_TIMEOUT_SECONDS,
        handoff_threshold: float = HANDOFF_CONFIDENCE_THRESHOLD,
        max_otp_attempts: int = MAX_OTP_ATTEMPTS,
    ) -> None:
        self.store = store
        self.auth = auth
        self.email = email
        self.classifier = classifier or OutOfScopeClassifier()
        self.selector = selector or PromptSelector()
        self.renderer = renderer or MessageRenderer()
        required = tuple(required_fields)
        unknown = set(required) - set(FIELD_KEYS)
        if unknown:
            raise ValueError(f"Unknown required fields: {sorted(unknown)}")
        # Keep the canonical order whatever the caller passed
        self.required_fields = tuple(k for k in FIELD_KEYS if k in required)
        self.timeout = timeout
        self.handoff_threshold = handoff_threshold
        self.max_otp_attempts = max_otp_attempts

    # ==================================================================
    # Public API
    # ==================================================================

    async def process_message(self, session_id: str, text: str) -> StructuredResponse:
        """Process one user message and return the next structured action."""
        try:
            async with self.store.acquire(session_id) as state:
                state.add_history("user", text)
                response = await self._handle_message(state, text or "")
                self._finish(state, response)
                return response
        except Exception:
            logger.exception("process_message failed for session %s", session_id)
            return self._error_response(session_id)

    async def record_consent(
        self,
        session_id: str,
        data_processing: bool,
        marketing: bool = False,
        transactional: bool = False,
    ) -> StructuredResponse:
        """Record a consent decision and re-run the completion check."""
        try:
            async with self.store.acquire(session_id) as state:
                state.consent.record(
                    data_processing=data_processing,
                    marketing_emails=marketing,
                    transactional_emails=transactional,
                )
                logger.info(
                    "Consent recorded for session %s (data_processing=%s)",
                    session_id, data_processing,
                )
                response = await self._continue(state, {})
                self._finish(state, response)
                return response
        except Exception:
            logger.exception("record_consent failed for session %s", session_id)
            return self._error_response(session_id)

    async def resend_code(self, session_id: str) -> StructuredResponse:
        """Send a fresh one-time code and reset the wrong-code counter."""
        try:
            async with self.store.acquire(session_id) as state:
                auth = state.auth
                if (
                    auth.is_authenticated
                    or auth.account_exists is not True
                    or state.extracted.confirmed_email is None
                ):
                    # No sign-in in progress; answer from the current state
                    response = await self._continue(state, {})
                else:
                    response = await self._send_code(state, resent=True)
                self._finish(state, response)
                return response
        except Exception:
            logger.exception("resend_code failed for session %s", session_id)
            return self._error_response(session_id)

    async def confirm_appointment(self, session_id: str, slot: SlotPayload) -> StructuredResponse:
        """Record the slot chosen by the patient and offer the email summary."""
        try:
            async with self.store.acquire(session_id) as state:
                response = await self._confirm(state, slot)
                self._finish(state, response)
                return response
        except Exception:
            logger.exception("confirm_appointment failed for session %s", session_id)
            return self._error_response(session_id)

    async def send_email_summary(
        self,
        session_id: str,
        appointment: AppointmentSummary | None = None,
    ) -> StructuredResponse:
        """Send the post-booking summary to the confirmed email.

        When *appointment* is omitted the summary is built from the slot
        recorded by :meth:`confirm_appointment`.
        """
        try:
            async with self.store.acquire(session_id) as state:
                response = await self._email_summary(state, appointment)
                self._finish(state, response)
                return response
        except Exception:
            logger.exception("send_email_summary failed for session %s", session_id)
            return self._error_response(session_id)

    def get_session_info(self, session_id: str) -> SessionInfo | None:
        state = self.store.get(session_id)
        return SessionInfo.from_state(state) if state is not None else None

    def reset_session(self, session_id: str) -> bool:
        """Forget a session.  Idempotent."""
        return self.store.delete(session_id)

    def sweep_sessions(self, now: datetime | None = None) -> int:
        return self.store.sweep(now)

    def active_sessions(self) -> int:
        return self.store.count()

    # ==================================================================
    # Message pipeline
    # ==================================================================

    async def _handle_message(self, state: SessionState, text: str) -> StructuredResponse:
        state.attempts.total += 1

        # 1. Out-of-scope classification runs before anything else
        result = self.classifier.classify(text)
        if result.matched:
            prior = state.out_of_scope_attempts
            state.out_of_scope_attempts += 1
            if should_escalate(result, prior, self.handoff_threshold):
                return self._handoff(state, result)
            logger.info(
                "Session %s: %s below escalation threshold (%.2f)",
                state.session_id, result.category.value, result.confidence,
            )

        # 2. Welcome
        if not state.welcome_shown:
            state.welcome_shown = True
            return self._welcome(state)

        # 3. One-time code
        if state.stage == ConversationStage.SIGN_IN:
            code = _WHITESPACE_RE.sub("", text)
            if _OTP_RE.fullmatch(code):
                return await self._verify_code(state, code)

        if state.stage == ConversationStage.WELCOME:
            state.stage = ConversationStage.INFO_COLLECTION

        # 4. Extraction
        errors = self._extract(state, text)

        if state.stage == ConversationStage.SIGN_IN:
            return self._sign_in_response(state)

        # 5. Identity resolution
        if state.stage in _STAGES_BEFORE_AUTH:
            response = await self._resolve_identity(state)
            if response is not None:
                return response

        # 6. Consent by reply
        if state.stage == ConversationStage.SIGN_UP and _AFFIRMATIVE_RE.search(fold(text)):
            state.consent.record(data_processing=True, transactional_emails=True)
            logger.info("Consent given by reply in session %s", state.session_id)

        # 7. Completion check
        return await self._continue(state, errors)

    async def _continue(self, state: SessionState, errors: dict[str, FieldError]) -> StructuredResponse:
        """Next response from the current state without new text."""
        if state.stage == ConversationStage.SIGN_IN:
            return self._sign_in_response(state)
        if state.stage in _STAGES_BEFORE_AUTH:
            response = await self._resolve_identity(state)
            if response is not None:
                return response
        return await self._completion_check(state, errors)

    # ------------------------------------------------------------------
    # Handoff / welcome
    # ------------------------------------------------------------------

    def _handoff(
        self,
        state: SessionState,
        result: ClassificationResult,
        *,
        reason: str | None = None,
    ) -> StructuredResponse:
        category = result.category or OutOfScopeCategory.OUT_OF_SCOPE
        reason = reason or CATEGORY_REASONS[category]
        state.handoff.is_pending = True
        state.handoff.reason = reason
        state.handoff.category = category.value
        state.handoff.attempts += 1
        logger.warning(
            "Session %s routed to human: category=%s confidence=%.2f",
            state.session_id, category.value, result.confidence,
        )
        message = self.renderer.render(
            "handoff",
            category=category.value,
            contact_phone=CLINIC_PHONE_E164,
            contact_email=CLINIC_EMAIL,
            business_hours=CLINIC_BUSINESS_HOURS,
        )
        return self._respond(
            state,
            Action.ROUTE_TO_HUMAN,
            message,
            disposition=Disposition(
                category=category.value,
                reason=reason,
                confidence=result.confidence,
                detected_patterns=list(result.patterns),
            ),
            clinic_contact=_clinic_contact(),
            ui_elements=[
                UIElement(
                    type="contact_card",
                    label="Contacter le cabinet",
                    action="contact_clinic",
                    data={
                        "phone": CLINIC_PHONE_E164,
                        "email": CLINIC_EMAIL,
                        "business_hours": CLINIC_BUSINESS_HOURS,
                    },
                    style="primary",
                ),
            ],
        )

    def _welcome(self, state: SessionState) -> StructuredResponse:
        return self._respond(
            state,
            Action.SHOW_WELCOME,
            self.renderer.render("welcome"),
            ui_elements=[
                UIElement(type="button", label="Prendre RDV", action="book", style="primary"),
                UIElement(type="button", label="Urgence", action="emergency", style="danger"),
                UIElement(type="button", label="Mon compte", action="account", style="secondary"),
                UIElement(type="button", label="Informations", action="clinic_info", style="secondary"),
            ],
        )

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _locked(self, state: SessionState, key: str) -> bool:
        """A field no longer accepts candidates from text."""
        if state.auth.is_authenticated and state.extracted.confirmed(key) is not None:
            return True
        # The account lookup is tied to the email it was run with
        return key == "email" and state.auth.account_exists is not None

    def _extract(self, state: SessionState, text: str) -> dict[str, FieldError]:
        """Run every extractor and update confirmed values.

        Returns:
            Validation errors keyed by field short key, for the fields where
            candidates were found but none was valid.
        """
        errors: dict[str, FieldError] = {}
        ex = state.extracted

        if not self._locked(state, "name"):
            names = extract_name_candidates(text)
            self._remember(ex.potential_names, (c.value for c in names))
            self._consider(state, "name", names)

        if not self._locked(state, "phone"):
            raw_phones = extract_phone_candidates(text)
            valid: list[Candidate] = []
            first_rejection = None
            for raw in raw_phones:
                result = normalize_mobile(raw)
                if result.is_valid:
                    valid.append(Candidate(value=result.normalized, strategy="phone", rank=PHONE_RANK))
                elif first_rejection is None:
                    first_rejection = result.rejection
            if raw_phones and not valid:
                errors["phone"] = FieldError(field=FIELD_KEYS["phone"], reason=first_rejection.value)
                state.attempts.phone += 1
            self._remember(ex.potential_phones, (c.value for c in valid))
            self._consider(state, "phone", valid)

        if not self._locked(state, "email"):
            emails = extract_email_candidates(text)
            tokens = email_like_tokens(text)
            if tokens and not emails:
                reason = check_email(tokens[0]) or EmailRejection.INVALID_FORMAT
                errors["email"] = FieldError(field=FIELD_EMAIL, reason=reason.value)
                state.attempts.email += 1
            self._remember(ex.potential_emails, (c.value for c in emails))
            self._consider(state, "email", emails)

        if errors:
            logger.info(
                "Session %s: invalid %s", state.session_id,
                ", ".join(f"{k} ({e.reason})" for k, e in errors.items()),
            )
        return errors

    @staticmethod
    def _remember(bucket: list[str], values: Iterable[str]) -> None:
        for value in values:
            if value not in bucket:
                bucket.append(value)
        del bucket[:-MAX_POTENTIAL_VALUES]

    def _consider(self, state: SessionState, key: str, candidates: list[Candidate]) -> bool:
        """Apply the confirmation rule to the best candidate of one message.

        The highest-ranked candidate (earliest on ties) replaces the
        confirmed value when it differs from it and its rank is at least the
        confirmed value's rank.  Returns True when the confirmed value
        changed.
        """
        if not candidates:
            return False
        ex = state.extracted
        best = candidates[0]
        for candidate in candidates[1:]:
            if candidate.rank > best.rank:
                best = candidate

        confirmed = ex.confirmed(key)
        current_rank = getattr(ex, f"{key}_rank")
        is_new = best.value != getattr(ex, f"last_extracted_{key}")
        setattr(ex, f"last_extracted_{key}", best.value)
        if is_new:
            setattr(state.attempts, key, getattr(state.attempts, key) + 1)

        if best.value == confirmed:
            if best.rank > current_rank:
                setattr(ex, f"{key}_rank", best.rank)
            return False
        if confirmed is not None and best.rank < current_rank:
            logger.debug(
                "Session %s: %s candidate (rank %d) below confirmed rank %d",
                state.session_id, key, best.rank, current_rank,
            )
            return False

        setattr(ex, f"confirmed_{key}", best.value)
        setattr(ex, f"{key}_rank", best.rank)
        state.collected_fields.add(key)
        logger.info("Session %s: %s confirmed via %s", state.session_id, key, best.strategy)
        return True

    def _missing(self, state: SessionState) -> list[str]:
        return [k for k in self.required_fields if state.extracted.confirmed(k) is None]

    # ------------------------------------------------------------------
    # Identity resolution and authentication
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[_T]) -> _T:
        return await asyncio.wait_for(awaitable, timeout=self.timeout)

    async def _resolve_identity(self, state: SessionState) -> StructuredResponse | None:
        """Account lookup, then sign-in or sign-up.  None when nothing to do."""
        email = state.extracted.confirmed_email
        auth = state.auth
        if email is None or auth.is_authenticated:
            return None

        if auth.account_exists is None:
            try:
                lookup = await self._call(self.auth.check_account_exists(email))
            except Exception as exc:
                logger.warning(
                    "Account lookup failed for session %s: %s", state.session_id, type(exc).__name__,
                )
                return self._retry_response(state, "account_lookup")
            auth.account_exists = lookup.exists
            auth.auth_method = "email_otp"
            logger.info("Session %s: account exists=%s", state.session_id, lookup.exists)

        if auth.account_exists:
            return await self._send_code(state)

        state.stage = ConversationStage.SIGN_UP
        if state.consent.data_processing:
            return None
        return self._sign_up_response(state)

    async def _send_code(self, state: SessionState, *, resent: bool = False) -> StructuredResponse:
        email = state.extracted.confirmed_email
        try:
            result = await self._call(self.auth.initiate_sign_in(email))
        except Exception as exc:
            logger.warning(
                "OTP dispatch failed for session %s: %s", state.session_id, type(exc).__name__,
            )
            return self._retry_response(state, "otp_dispatch")
        if not result.otp_sent:
            logger.warning("OTP not sent for session %s: %s", state.session_id, result.error)
            return self._retry_response(state, "otp_dispatch")

        state.auth.otp_attempts = 0
        state.auth.last_otp_sent = utc_now()
        state.stage = ConversationStage.SIGN_IN
        return self._sign_in_response(state, sent=True, resent=resent)

    async def _verify_code(self, state: SessionState, code: str) -> StructuredResponse:
        auth = state.auth
        if auth.otp_attempts >= self.max_otp_attempts:
            return self._sign_in_response(state, exhausted=True)

        email = state.extracted.confirmed_email
        try:
            result = await self._call(self.auth.complete_sign_in(email, code))
        except Exception as exc:
            logger.warning(
                "OTP verification failed for session %s: %s", state.session_id, type(exc).__name__,
            )
            return self._retry_response(state, "otp_verify")

        if not result.success:
            auth.otp_attempts += 1
            logger.info(
                "Session %s: wrong code (%d/%d)", state.session_id, auth.otp_attempts, self.max_otp_attempts,
            )
            if auth.otp_attempts >= self.max_otp_attempts:
                return self._sign_in_response(state, exhausted=True)
            return self._sign_in_response(state, error=result.error or "Code incorrect.")

        auth.is_authenticated = True
        auth.auth_method = "email_otp"
        auth.external_session_id = result.external_session_id
        if result.patient is not None:
            auth.patient_id = result.patient.id
            self._adopt_profile(state, result.patient)
        state.stage = ConversationStage.INFO_COLLECTION
        logger.info("Session %s authenticated", state.session_id)
        return await self._completion_check(state, {})

    def _adopt_profile(self, state: SessionState, profile: PatientProfile) -> None:
        """Copy authenticated profile values over the confirmed fields."""
        ex = state.extracted
        values: dict[str, str | None] = {"name": profile.name, "email": None, "phone": None}
        if profile.email and check_email(profile.email) is None:
            values["email"] = profile.email.strip().lower()
        if profile.phone_e164:
            values["phone"] = normalize_mobile(profile.phone_e164).normalized
        for key, value in values.items():
            if not value:
                continue
            setattr(ex, f"confirmed_{key}", value)
            setattr(ex, f"{key}_rank", PROFILE_RANK)
            state.collected_fields.add(key)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _completion_check(
        self, state: SessionState, errors: dict[str, FieldError],
    ) -> StructuredResponse:
        missing = self._missing(state)

        if not missing:
            if (
                state.stage == ConversationStage.SIGN_UP
                and not state.auth.account_created
                and not state.auth.is_authenticated
            ):
                response = await self._create_account(state)
                if response is not None:
                    return response
            if state.stage not in _STAGES_AFTER_IDENTITY:
                state.stage = ConversationStage.SLOT_SELECTION
            return self._find_slots(state)

        if state.stage not in (ConversationStage.SIGN_UP, *_STAGES_AFTER_IDENTITY):
            state.stage = ConversationStage.INFO_COLLECTION
        invalid = [k for k in missing if k in errors]
        message = self.selector.select(state, missing, invalid)
        return self._respond(
            state,
            Action.NEED_INFO,
            message,
            missing_fields=[FIELD_KEYS[k] for k in missing],
            validation_errors=[errors[k] for k in invalid] or None,
            patient=self._patient_payload(state),
        )

    async def _create_account(self, state: SessionState) -> StructuredResponse | None:
        """Create the patient account; a response means we cannot proceed yet."""
        if not state.consent.data_processing:
            return self._sign_up_response(state, consent_missing=True)

        ex = state.extracted
        try:
            result = await self._call(
                self.auth.create_patient(
                    ex.confirmed_name or "",
                    ex.confirmed_email,
                    ex.confirmed_phone or "",
                    state.consent.as_payload(),
                )
            )
        except Exception as exc:
            logger.warning(
                "Account creation failed for session %s: %s", state.session_id, type(exc).__name__,
            )
            return self._retry_response(state, "account_creation")
        if result.patient is None:
            logger.warning("Account creation refused for session %s: %s", state.session_id, result.error)
            return self._retry_response(state, "account_creation", detail=result.error)

        state.auth.account_created = True
        state.auth.patient_id = result.patient.id
        logger.info("Session %s: patient account created", state.session_id)
        return None

    def _find_slots(self, state: SessionState) -> StructuredResponse:
        ex = state.extracted
        message = self.renderer.render(
            "find_slots",
            authenticated=state.auth.is_authenticated,
            name=ex.confirmed_name,
        )
        return self._respond(
            state,
            Action.FIND_SLOTS,
            message,
            patient=self._patient_payload(state),
            auth=self._auth_payload(state),
        )

    # ------------------------------------------------------------------
    # Booking follow-up
    # ------------------------------------------------------------------

    async def _confirm(self, state: SessionState, slot: SlotPayload) -> StructuredResponse:
        if state.stage not in _STAGES_AFTER_IDENTITY or self._missing(state):
            logger.info("Session %s: slot confirmation before identity is complete", state.session_id)
            return await self._continue(state, {})

        try:
            start = _parse_iso(slot.start_iso)
        except ValueError:
            return self._respond(
                state,
                Action.NEED_INFO,
                self.renderer.render("error", kind="slot"),
                missing_fields=["slot.start_iso"],
                validation_errors=[FieldError(field="slot.start_iso", reason="invalid_format")],
            )

        state.appointment = slot.model_dump()
        # Rebooking after the summary keeps the session completed
        if state.stage != ConversationStage.COMPLETED:
            state.stage = ConversationStage.CONFIRMATION
        email = state.extracted.confirmed_email
        message = self.renderer.render(
            "confirmation",
            date=start.strftime("%d/%m/%Y"),
            time=start.strftime("%H:%M"),
            practitioner=slot.practitioner,
        )
        ui = [
            UIElement(
                type="button",
                label="Recevoir le récapitulatif par email",
                action="send_email_summary",
                style="primary",
            ),
        ] if email else None
        return self._respond(
            state,
            Action.CONFIRMATION,
            message,
            patient=self._patient_payload(state),
            slot=slot,
            email_summary=EmailSummaryPayload(
                consent_given=state.consent.transactional_emails,
                send_to=email,
                include_sections=list(EMAIL_SUMMARY_SECTIONS),
            ) if email else None,
            ui_elements=ui,
        )

    async def _email_summary(
        self, state: SessionState, appointment: AppointmentSummary | None,
    ) -> StructuredResponse:
        email = state.extracted.confirmed_email
        if email is None:
            return self._respond(
                state,
                Action.NEED_INFO,
                self.renderer.render("email_summary", missing_email=True),
                missing_fields=[FIELD_EMAIL],
            )

        if appointment is None:
            appointment = self._summary_from_state(state)
            if appointment is None:
                return self._respond(
                    state,
                    Action.NEED_INFO,
                    self.renderer.render("error", kind="slot"),
                    missing_fields=["slot.start_iso"],
                )

        try:
            delivery = await self._call(self.email.send_appointment_summary(email, appointment))
            failure = None if delivery.success else (delivery.error or "delivery refused")
        except Exception as exc:
            failure = type(exc).__name__
        if failure is not None:
            logger.warning("Email summary failed for session %s: %s", state.session_id, failure)
            message = self.renderer.render(
                "email_summary",
                success=False,
                contact_phone=CLINIC_PHONE_E164,
                contact_email=CLINIC_EMAIL,
            )
            response = self._handoff(
                state,
                ClassificationResult(
                    matched=True,
                    category=OutOfScopeCategory.OUT_OF_SCOPE,
                    confidence=0.9,
                    patterns=["email_delivery_failure"],
                ),
                reason="email delivery failed",
            )
            response.message = message
            return response

        state.summary_sent = True
        state.consent.record(transactional_emails=True)
        state.stage = ConversationStage.COMPLETED
        logger.info("Email summary sent for session %s", state.session_id)
        return self._respond(
            state,
            Action.SEND_EMAIL_SUMMARY,
            self.renderer.render("email_summary", success=True, email=email),
            patient=self._patient_payload(state),
            email_summary=EmailSummaryPayload(
                consent_given=True,
                send_to=email,
                include_sections=list(EMAIL_SUMMARY_SECTIONS),
            ),
        )

    def _summary_from_state(self, state: SessionState) -> AppointmentSummary | None:
        if not state.appointment:
            return None
        slot = SlotPayload.model_validate(state.appointment)
        start = _parse_iso(slot.start_iso)
        return AppointmentSummary(
            patient_name=state.extracted.confirmed_name or "",
            appointment_date=start.strftime("%d/%m/%Y"),
            appointment_time=start.strftime("%H:%M"),
            practitioner=slot.practitioner,
            care_type=slot.care_type,
        )

    # ==================================================================
    # Response builders
    # ==================================================================

    def _respond(self, state: SessionState, action: Action, message: str, **payloads: Any) -> StructuredResponse:
        return StructuredResponse(
            action=action,
            message=message,
            session_context=self._session_context(state),
            **payloads,
        )

    def _finish(self, state: SessionState, response: StructuredResponse) -> None:
        state.add_history("bot", response.message, response.action.value)
        if response.session_context is not None:
            response.session_context.last_bot_message = response.message
            response.session_context.conversation_stage = state.stage.value
        logger.debug(
            "Session %s -> %s (stage=%s)", state.session_id, response.action.value, state.stage.value,
        )

    def _session_context(self, state: SessionState) -> SessionContext:
        ex = state.extracted
        return SessionContext(
            session_id=state.session_id,
            attempt_count=state.attempts.total,
            conversation_stage=state.stage.value,
            last_bot_message=state.history[-1].message if state.history else None,
            collected_info=CollectedInfo(
                has_name=ex.confirmed_name is not None,
                has_phone=ex.confirmed_phone is not None,
                has_email=ex.confirmed_email is not None,
                is_authenticated=state.auth.is_authenticated,
                name_attempt_count=state.attempts.name,
                phone_attempt_count=state.attempts.phone,
                email_attempt_count=state.attempts.email,
                auth_attempt_count=state.auth.otp_attempts,
            ),
            consent=ConsentFlags(
                data_processing=state.consent.data_processing,
                marketing_emails=state.consent.marketing_emails,
                transactional_emails=state.consent.transactional_emails,
            ),
        )

    def _patient_payload(self, state: SessionState) -> PatientPayload:
        ex = state.extracted
        return PatientPayload(
            name=ex.confirmed_name,
            phone_e164=ex.confirmed_phone,
            email=ex.confirmed_email,
            patient_id=state.auth.patient_id,
        )

    def _auth_payload(self, state: SessionState) -> AuthPayload | None:
        auth = state.auth
        if state.extracted.confirmed_email is None and auth.account_exists is None:
            return None
        if auth.is_authenticated or auth.account_created:
            status = AuthStatus.VERIFIED
        elif auth.account_exists is not None:
            status = AuthStatus.IN_PROGRESS
        else:
            status = AuthStatus.REQUIRED
        return AuthPayload(
            has_account=True if auth.account_created else auth.account_exists,
            method=auth.auth_method,
            status=status,
            session_id=auth.external_session_id,
        )

    def _sign_in_response(
        self,
        state: SessionState,
        *,
        sent: bool = False,
        resent: bool = False,
        error: str | None = None,
        exhausted: bool = False,
    ) -> StructuredResponse:
        email = state.extracted.confirmed_email
        remaining = max(self.max_otp_attempts - state.auth.otp_attempts, 0)
        exhausted = exhausted or remaining == 0
        message = self.renderer.render(
            "sign_in",
            email=email,
            code_length=OTP_CODE_LENGTH,
            error=error,
            attempts_remaining=remaining,
            exhausted=exhausted,
            sent=sent,
            resent=resent,
        )
        ui = [
            UIElement(
                type="otp_input",
                label="Code de vérification",
                action="submit_otp",
                data={"length": OTP_CODE_LENGTH},
            ),
        ]
        if exhausted:
            ui = [UIElement(type="button", label="Renvoyer le code", action="resend_otp", style="primary")]
        return self._respond(
            state,
            Action.SIGN_IN,
            message,
            auth=AuthPayload(
                has_account=True,
                method="email_otp",
                status=AuthStatus.IN_PROGRESS,
                otp_sent_to=email,
                attempts_remaining=remaining,
            ),
            ui_elements=ui,
        )

    def _sign_up_response(
        self,
        state: SessionState,
        *,
        consent_missing: bool = False,
        error: str | None = None,
    ) -> StructuredResponse:
        return self._respond(
            state,
            Action.SIGN_UP,
            self.renderer.render(
                "sign_up",
                email=state.extracted.confirmed_email,
                consent_missing=consent_missing,
                error=error,
            ),
            auth=AuthPayload(has_account=False, method="email_otp", status=AuthStatus.REQUIRED),
            missing_fields=[FIELD_CONSENT] if consent_missing else None,
            ui_elements=[
                UIElement(
                    type="consent_checkbox",
                    label="J'accepte le traitement de mes données personnelles",
                    action="record_consent",
                    data={"consent_type": "data_processing", "required": True},
                ),
                UIElement(
                    type="consent_checkbox",
                    label="J'accepte de recevoir des informations de la clinique",
                    action="record_consent",
                    data={"consent_type": "marketing_emails", "required": False},
                ),
            ],
        )

    def _retry_response(self, state: SessionState, kind: str, *, detail: str | None = None) -> StructuredResponse:
        return self._respond(
            state,
            Action.NEED_INFO,
            self.renderer.render("error", kind=kind, detail=detail),
            missing_fields=[ERROR_PROCESSING],
        )

    def _error_response(self, session_id: str) -> StructuredResponse:
        return StructuredResponse(
            action=Action.NEED_INFO,
            message="Désolé, une erreur est survenue. Pouvez-vous reformuler votre message ?",
            missing_fields=[ERROR_PROCESSING],
        )


def _clinic_contact() -> ClinicContact:
    return ClinicContact(
        phone_e164=CLINIC_PHONE_E164,
        email=CLINIC_EMAIL,
        business_hours=CLINIC_BUSINESS_HOURS,
    )


def _parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into clinic local time.

    Naive timestamps are taken as clinic local time.
    """
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    tz = ZoneInfo(CLINIC_TIMEZONE)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)
