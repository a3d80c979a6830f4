"""Twilio client for WhatsApp and SMS delivery of confirmation links.

Provides a unified interface for Twilio operations with:
- Rate limiting
- Retries for transient gateway failures (tenacity)
- Circuit breaker pattern
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from core.config import get_settings
from core.exceptions import MissingCredentialsError
from core.logging_config import get_logger, log_external_call
from delivery.guards import CircuitBreaker, RateLimiter

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# Circuit breaker for Twilio API
_twilio_circuit = CircuitBreaker(
    name="twilio_api",
    failure_threshold=5,
    recovery_timeout=60,
)

# Rate limiter based on settings
_rate_limiter = RateLimiter(
    max_calls=int(SETTINGS.twilio_max_messages_per_second * 60),
    period_seconds=60,
)


def _is_transient(exc: BaseException) -> bool:
    """Network errors, throttling and gateway 5xx are worth another attempt."""
    if isinstance(exc, TwilioRestException):
        return exc.status == 429 or exc.status >= 500
    return isinstance(exc, (ConnectionError, TimeoutError, OSError))


RETRY_TRANSIENT = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    before_sleep=before_sleep_log(LOGGER, log_level=30),
    reraise=True,
)

@dataclass
class MessageResult:
    """Result from sending a message."""
    success: bool
    sid: Optional[str] = None
    status: str = "unknown"
    error_code: Optional[int] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sid": self.sid,
            "status": self.status,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class TwilioClient:
    """
    Twilio client with rate limiting and error handling.

    Usage:
        client = get_twilio_client()
        result = client.send_message(to="+5511987654321", body="...", whatsapp=True)
    """

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        whatsapp_from: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.account_sid = account_sid or SETTINGS.twilio_account_sid
        self.auth_token = auth_token or SETTINGS.twilio_auth_token
        self.from_number = from_number or SETTINGS.twilio_from_number
        self.whatsapp_from = whatsapp_from or SETTINGS.twilio_whatsapp_from
        self.timeout_seconds = timeout_seconds or SETTINGS.delivery_timeout_seconds

        self._client: Optional[Client] = None
        self.circuit = _twilio_circuit
        self.rate_limiter = _rate_limiter

    def _get_client(self) -> Client:
        """Get or create the Twilio REST client."""
        if self._client is None:
            if not self.account_sid or not self.auth_token:
                raise MissingCredentialsError("Twilio credentials not configured")
            self._client = Client(
                self.account_sid,
                self.auth_token,
                http_client=TwilioHttpClient(timeout=self.timeout_seconds),
            )
        return self._client

    @RETRY_TRANSIENT
    def _create_message(self, params: Dict[str, Any]) -> Any:
        return self._get_client().messages.create(**params)

    def send_message(
        self,
        to: str,
        body: str,
        whatsapp: bool = False,
        status_callback: Optional[str] = None,
    ) -> MessageResult:
        """
        Send a WhatsApp or SMS message.

        Args:
            to: Recipient phone number (E.164 format).
            body: Message content.
            whatsapp: Send through the WhatsApp sender instead of SMS.
            status_callback: Webhook URL for delivery status updates.

        Returns:
            MessageResult with send outcome. Transport failures are reported
            in the result, never raised.
        """
        if not self.circuit.can_execute():
            LOGGER.warning("Twilio circuit breaker is open")
            return MessageResult(
                success=False,
                status="circuit_open",
                error_message="Service temporarily unavailable",
            )

        if not self.rate_limiter.can_proceed():
            wait_time = self.rate_limiter.wait_time()
            LOGGER.warning(f"Rate limit hit, waiting {wait_time:.1f}s")
            time.sleep(min(wait_time, 5))

        sender = self.whatsapp_from if whatsapp else self.from_number
        if whatsapp:
            to = _whatsapp_address(to)
            sender = _whatsapp_address(sender)
        params: Dict[str, Any] = {"to": to, "from_": sender, "body": body}
        callback = status_callback or SETTINGS.twilio_status_callback_url
        if callback:
            params["status_callback"] = callback

        operation = "send_whatsapp" if whatsapp else "send_sms"
        started = time.monotonic()
        try:
            message = self._create_message(params)
        except MissingCredentialsError as e:
            return MessageResult(success=False, status="not_configured", error_message=str(e))
        except TwilioRestException as e:
            self.circuit.record_failure()
            log_external_call(
                LOGGER, "twilio", operation, False, (time.monotonic() - started) * 1000,
                error_code=e.code,
            )
            return MessageResult(
                success=False,
                status="failed",
                error_code=e.code,
                error_message=str(e.msg),
            )
        except Exception as e:
            # Network errors and timeouts from the HTTP client
            self.circuit.record_failure()
            LOGGER.exception("Unexpected error sending message via Twilio")
            return MessageResult(success=False, status="error", error_message=str(e))

        self.circuit.record_success()
        self.rate_limiter.record_call()
        log_external_call(
            LOGGER, "twilio", operation, True, (time.monotonic() - started) * 1000,
            sid=message.sid,
        )
        return MessageResult(success=True, sid=message.sid, status=message.status)


def _whatsapp_address(number: Optional[str]) -> Optional[str]:
    if number and not number.startswith("whatsapp:"):
        return f"whatsapp:{number}"
    return number


# Module-level singleton
_client: Optional[TwilioClient] = None


def get_twilio_client() -> TwilioClient:
    """Get the global TwilioClient instance."""
    global _client
    if _client is None:
        _client = TwilioClient()
    return _client


def reset_twilio_client() -> None:
    """Reset the global Twilio client (useful for testing)."""
    global _client
    _client = None


__all__ = [
    "TwilioClient",
    "MessageResult",
    "get_twilio_client",
    "reset_twilio_client",
]
