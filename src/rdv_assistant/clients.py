"""HTTP implementations of the collaborator interfaces.

Thin ``httpx.AsyncClient`` wrappers.  JSON bodies are validated with the
pydantic result models; any transport error, non-2xx status or malformed
body is re-raised as :class:`~rdv_assistant.interfaces.CollaboratorError`.

Endpoints (relative to the configured base URL)::

    POST /accounts/lookup            {email}
    POST /sign-in/initiate           {email}
    POST /sign-in/complete           {email, code}
    POST /patients                   {name, email, phone_e164, consent}
    POST /emails/appointment-summary {email, data}
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from rdv_assistant.constants import COLLABORATOR_TIMEOUT_SECONDS
from rdv_assistant.interfaces import AuthService, CollaboratorError, EmailService
from rdv_assistant.models.collaborators import (
    AccountLookup,
    AppointmentSummary,
    EmailDelivery,
    PatientCreation,
    SignInCompletion,
    SignInInitiation,
)

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


class _HttpCollaborator:
    """Shared client plumbing.

    Args:
        base_url: service root, e.g. ``http://auth:8080/api``
        api_key: optional bearer token
        timeout: per-request timeout in seconds
        client: pre-built ``httpx.AsyncClient`` (tests pass one backed by
            ``httpx.MockTransport``); its base URL is used as-is
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        api_key: str | None = None,
        timeout: float = COLLABORATOR_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: dict[str, Any], model: type[_M]) -> _M:
        try:
            resp = await self._client.post(path, json=body)
            resp.raise_for_status()
            return model.model_validate(resp.json())
        except httpx.HTTPStatusError as exc:
            logger.warning("%s %s returned %d", type(self).__name__, path, exc.response.status_code)
            raise CollaboratorError(f"{path} returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", type(self).__name__, path, type(exc).__name__)
            raise CollaboratorError(f"{path} request failed: {exc}") from exc
        except (ValueError, ValidationError) as exc:
            # ValueError covers a body that is not JSON at all
            raise CollaboratorError(f"{path} returned an unexpected body") from exc


class HttpAuthService(_HttpCollaborator, AuthService):
    """Auth/OTP service reached over HTTP."""

    async def check_account_exists(self, email: str) -> AccountLookup:
        return await self._post("/accounts/lookup", {"email": email}, AccountLookup)

    async def initiate_sign_in(self, email: str) -> SignInInitiation:
        return await self._post("/sign-in/initiate", {"email": email}, SignInInitiation)

    async def complete_sign_in(self, email: str, code: str) -> SignInCompletion:
        return await self._post(
            "/sign-in/complete", {"email": email, "code": code}, SignInCompletion,
        )

    async def create_patient(
        self, name: str, email: str, phone: str, consent: dict,
    ) -> PatientCreation:
        body = {"name": name, "email": email, "phone_e164": phone, "consent": consent}
        return await self._post("/patients", body, PatientCreation)


class HttpEmailService(_HttpCollaborator, EmailService):
    """Transactional email service reached over HTTP."""

    async def send_appointment_summary(
        self, email: str, data: AppointmentSummary,
    ) -> EmailDelivery:
        body = {"email": email, "data": data.model_dump(mode="json")}
        return await self._post("/emails/appointment-summary", body, EmailDelivery)
