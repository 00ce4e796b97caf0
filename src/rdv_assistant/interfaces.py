"""Abstract interfaces for the external collaborators.

The orchestrator only talks to these ABCs.  The SDK ships HTTP-backed
implementations in :mod:`rdv_assistant.clients`; tests use in-memory
doubles.

Typical integration flow::

    auth: AuthService = HttpAuthService(base_url=...)
    email: EmailService = HttpEmailService(base_url=...)
    orchestrator = DialogOrchestrator(SessionStore(), auth, email)

    response = await orchestrator.process_message(session_id, text)

Implementations signal transport or service failures by raising; the
orchestrator catches every exception at the call site and turns it into a
retry message (auth) or a handoff (email delivery).
"""

from abc import ABC, abstractmethod

from rdv_assistant.models.collaborators import (
    AccountLookup,
    AppointmentSummary,
    EmailDelivery,
    PatientCreation,
    SignInCompletion,
    SignInInitiation,
)


class CollaboratorError(Exception):
    """Raised by collaborator implementations on transport or service failure."""


class AuthService(ABC):
    """Account lookup and passwordless (email OTP) authentication."""

    @abstractmethod
    async def check_account_exists(self, email: str) -> AccountLookup:
        """Look up a patient account by email.

        Parameters
        ----------
        email:
            Normalised (lower-case) email address.

        Returns
        -------
        AccountLookup
            ``exists`` plus the patient profile when known.
        """
        ...

    @abstractmethod
    async def initiate_sign_in(self, email: str) -> SignInInitiation:
        """Send a one-time code to *email*."""
        ...

    @abstractmethod
    async def complete_sign_in(self, email: str, code: str) -> SignInCompletion:
        """Verify *code* for *email*.

        A wrong code is reported with ``success=False`` and an ``error``
        message, not by raising.
        """
        ...

    @abstractmethod
    async def create_patient(
        self,
        name: str,
        email: str,
        phone: str,
        consent: dict,
    ) -> PatientCreation:
        """Create a patient account.

        Parameters
        ----------
        consent:
            The consent record as produced by ``Consent.as_payload()``;
            data-processing consent is always ``True`` here.
        """
        ...


class EmailService(ABC):
    """Transactional email delivery."""

    @abstractmethod
    async def send_appointment_summary(
        self, email: str, data: AppointmentSummary
    ) -> EmailDelivery:
        """Send the post-booking summary to *email*."""
        ...
