from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from canteen.core.config import Settings, get_settings
from canteen.core.errors import DeliveryFailure, RecipientUnreachable

logger = logging.getLogger(__name__)

# Gateway error codes meaning the device token will never work again.
UNREGISTERED_CODES = {
    "messaging/invalid-registration-token",
    "messaging/registration-token-not-registered",
    "unregistered",
    "invalid_token",
}


@dataclass
class PushMessage:
    recipient: str
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)

    def payload(self) -> dict[str, Any]:
        return {"title": self.title, "body": self.body, "data": dict(self.data)}

    def wire(self) -> dict[str, Any]:
        return {
            "token": self.recipient,
            "notification": {"title": self.title, "body": self.body},
            "data": dict(self.data),
        }


@dataclass
class DeliveryReceipt:
    backend: str
    message_id: str | None = None


class PushNotifier(Protocol):
    backend: str

    def send(self, message: PushMessage) -> DeliveryReceipt:
        ...


class LogPushNotifier:
    backend = "log"

    def send(self, message: PushMessage) -> DeliveryReceipt:
        logger.info(
            "push to %s...: %s | %s data=%s",
            message.recipient[:8],
            message.title,
            message.body,
            message.data,
        )
        return DeliveryReceipt(backend=self.backend)


class WebhookPushNotifier:
    backend = "webhook"

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.url = self.settings.push_gateway_url
        self.timeout = max(1, self.settings.push_gateway_timeout_seconds)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.push_gateway_api_key:
            headers["Authorization"] = f"Bearer {self.settings.push_gateway_api_key}"
        return headers

    def _post(self, body: dict[str, Any]) -> httpx.Response:
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.url, headers=self._headers(), json=body)

    @staticmethod
    def _error_code(response: httpx.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("code")
        if isinstance(error, str):
            return error
        return payload.get("code")

    def send(self, message: PushMessage) -> DeliveryReceipt:
        try:
            response = self._post(message.wire())
        except httpx.HTTPError as exc:
            raise DeliveryFailure(f"push gateway unreachable: {exc}") from exc

        if response.status_code in (404, 410) or self._error_code(response) in UNREGISTERED_CODES:
            raise RecipientUnreachable(f"recipient token rejected by push gateway (status={response.status_code})")
        if response.status_code >= 400:
            raise DeliveryFailure(f"push gateway returned {response.status_code}: {response.text[:200]}")

        message_id = None
        try:
            body = response.json()
            if isinstance(body, dict):
                message_id = body.get("name") or body.get("message_id")
        except ValueError:
            pass
        return DeliveryReceipt(backend=self.backend, message_id=message_id)


def build_notifier(settings: Settings | None = None) -> PushNotifier:
    settings = settings or get_settings()
    if settings.notifier_backend == "webhook":
        try:
            return WebhookPushNotifier(settings)
        except Exception as exc:
            if settings.notifier_strict:
                raise RuntimeError(f"webhook notifier unavailable in strict mode: {exc}") from exc
            logger.warning("webhook notifier unavailable, falling back to log: %s", exc)
    elif settings.notifier_backend != "log":
        logger.warning("unknown notifier backend=%s, using log", settings.notifier_backend)
    return LogPushNotifier()
