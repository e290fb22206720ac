"""Best-effort notifications sent after a student account is created."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Protocol

import httpx

from .models import Student


class NotificationError(RuntimeError):
    """Raised when a notification could not be delivered."""


class Notifier(Protocol):
    async def send_account_verification(self, student: Student) -> None:
        ...


class NullNotifier:
    """Notifier used when no delivery endpoint is configured."""

    async def send_account_verification(self, student: Student) -> None:
        return None


def _normalize_url(url: str) -> str:
    cleaned = (url or "").strip()
    if not cleaned:
        raise ValueError("Notification URL must not be empty")
    return cleaned


def student_payload(student: Student) -> Dict[str, Any]:
    return {
        "id": student.id,
        "email": student.email,
        "name": student.name,
    }


@dataclass
class _WebhookConfig:
    url: str
    timeout: float
    token: str | None


class WebhookNotifier:
    """Deliver account verification requests to an HTTP endpoint.

    The receiving service is responsible for generating the verification link
    and emailing it to the student.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = _WebhookConfig(url=_normalize_url(url), timeout=timeout, token=token)
        self._transport = transport

    async def send_account_verification(self, student: Student) -> None:
        headers = {}
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        payload = {"event": "account_verification", "student": student_payload(student)}

        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout, transport=self._transport
            ) as client:
                response = await client.post(self._config.url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise NotificationError(f"Failed to contact notification endpoint: {exc}") from exc

        if response.status_code >= 400:
            raise NotificationError(
                f"Notification endpoint responded with status {response.status_code}"
            )


def build_notifier(settings) -> Notifier:
    """Return the notifier described by ``settings``."""

    if not settings.notify_url:
        return NullNotifier()
    return WebhookNotifier(
        settings.notify_url,
        timeout=settings.notify_timeout,
        token=settings.notify_token,
    )


__all__ = [
    "NotificationError",
    "Notifier",
    "NullNotifier",
    "WebhookNotifier",
    "build_notifier",
    "student_payload",
]
