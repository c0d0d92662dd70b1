"""
HTTP client for the bot messaging gateway (Bot Framework connector REST API).

Every call goes through two layers:

1. Authorization: a bearer token from the identity provider is attached; on a
   401 the token is dropped, re-acquired and the request sent once more. A
   second 401 raises GatewayAuthenticationError.
2. Retry policy: network errors are retried ``retry_count`` times with a fixed
   delay, after which GatewayTransportError is raised; 429 responses are
   retried ``throttle_retry_count`` times with a fixed delay and the last 429
   is returned to the caller.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional, Set, Tuple

import httpx

from celebrations.core.config import settings
from .errors import GatewayAuthenticationError, GatewayTransportError, TokenAcquisitionError, UntrustedServiceUrlError
from .schemas import DeliveryStatus, OutboundMessage

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429


def _normalize_url(url: str) -> str:
    return url.strip().rstrip("/").lower()


class TrustedServiceUrls:
    """Service URLs the bot credentials may be sent to."""

    def __init__(self, urls: Optional[Set[str]] = None):
        self._urls: Set[str] = {_normalize_url(u) for u in (urls or set())}

    def is_trusted(self, url: str) -> bool:
        return _normalize_url(url) in self._urls


class TokenProvider:
    """Client-credentials token for the bot, cached until shortly before expiry."""

    def __init__(
        self,
        http: httpx.Client,
        app_id: str,
        app_password: str,
        token_endpoint: str = settings.TOKEN_ENDPOINT,
        scope: str = settings.TOKEN_SCOPE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.http = http
        self.app_id = app_id
        self.app_password = app_password
        self.token_endpoint = token_endpoint
        self.scope = scope
        self.clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def get_token(self) -> str:
        if self._token and self.clock() < self._expires_at:
            return self._token

        try:
            response = self.http.post(
                self.token_endpoint,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.app_id,
                    "client_secret": self.app_password,
                    "scope": self.scope,
                },
            )
        except httpx.TransportError as e:
            raise TokenAcquisitionError(f"Token endpoint unreachable: {e!r}") from e
        if response.status_code != 200:
            raise TokenAcquisitionError(f"Token endpoint returned HTTP {response.status_code}")
        body = response.json()
        token = body.get("access_token")
        if not token:
            raise TokenAcquisitionError("Token endpoint response has no access_token")

        # Refresh a minute early
        self._token = token
        self._expires_at = self.clock() + max(int(body.get("expires_in", 3600)) - 60, 0)
        return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


def classify(response: httpx.Response) -> DeliveryStatus:
    if response.is_success:
        return DeliveryStatus.SUCCEEDED
    if response.status_code == TOO_MANY_REQUESTS:
        return DeliveryStatus.THROTTLED
    if response.status_code == 404:
        return DeliveryStatus.NOT_FOUND
    return DeliveryStatus.FAILED


class GatewayClient:
    def __init__(
        self,
        http: httpx.Client,
        token_provider: TokenProvider,
        trusted_urls: TrustedServiceUrls,
        retry_count: int = settings.RETRY_COUNT,
        retry_delay: float = settings.RETRY_DELAY_SECONDS,
        throttle_retry_count: int = settings.RETRY_COUNT_ON_THROTTLING,
        throttle_retry_delay: float = settings.RETRY_DELAY_ON_THROTTLING_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.http = http
        self.token_provider = token_provider
        self.trusted_urls = trusted_urls
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.throttle_retry_count = throttle_retry_count
        self.throttle_retry_delay = throttle_retry_delay
        self.sleep = sleep

    # --- Operations ---

    def send_to_conversation(self, message: OutboundMessage) -> DeliveryStatus:
        url = self._url(message.service_url, f"v3/conversations/{message.conversation_id}/activities")
        response = self.request("POST", message.service_url, url, message.to_activity())
        return classify(response)

    def create_conversation(self, message: OutboundMessage, channel_id: str) -> Tuple[DeliveryStatus, Optional[str]]:
        """Start a new channel thread whose first post is the message text."""
        url = self._url(message.service_url, "v3/conversations")
        body: Dict[str, Any] = {
            "isGroup": True,
            "activity": message.to_activity(),
            "channelData": {"channel": {"id": channel_id}},
        }
        if message.tenant_id:
            body["tenantId"] = message.tenant_id
        response = self.request("POST", message.service_url, url, body)
        status = classify(response)
        conversation_id = None
        if status == DeliveryStatus.SUCCEEDED:
            conversation_id = response.json().get("id") if response.content else None
            if not conversation_id:
                logger.error(f"❌ [Gateway] Conversation created in {channel_id} but the response has no id")
                status = DeliveryStatus.FAILED
        return status, conversation_id

    def update_activity(self, message: OutboundMessage) -> DeliveryStatus:
        if not message.reply_to_id:
            raise ValueError("update_activity needs the id of the activity to replace")
        url = self._url(
            message.service_url,
            f"v3/conversations/{message.conversation_id}/activities/{message.reply_to_id}",
        )
        response = self.request("PUT", message.service_url, url, message.to_activity())
        return classify(response)

    # --- Plumbing ---

    @staticmethod
    def _url(service_url: str, path: str) -> str:
        return f"{service_url.rstrip('/')}/{path}"

    def request(self, method: str, service_url: str, url: str, body: Dict[str, Any]) -> httpx.Response:
        if not self.trusted_urls.is_trusted(service_url):
            raise UntrustedServiceUrlError(f"Service URL {service_url} is not trusted")

        response = self._send_with_policy(method, url, body, self.token_provider.get_token())
        if response.status_code != 401:
            return response

        logger.info("[Gateway] 401 from gateway, refreshing token and retrying once")
        self.token_provider.invalidate()
        response = self._send_with_policy(method, url, body, self.token_provider.get_token())
        if response.status_code != 401:
            return response

        raise GatewayAuthenticationError("Failed to acquire a valid token after a re-try!")

    def _send_with_policy(self, method: str, url: str, body: Dict[str, Any], token: str) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        io_failures = 0
        throttled = 0
        while True:
            try:
                response = self.http.request(method, url, json=body, headers=headers)
            except httpx.TransportError as e:
                io_failures += 1
                if io_failures > self.retry_count:
                    raise GatewayTransportError(
                        f"IO exception still happens after {self.retry_count} re-tries!"
                    ) from e
                logger.warning(f"⚠️  [Gateway] {method} {url} failed ({e!r}), retry {io_failures}/{self.retry_count}")
                self.sleep(self.retry_delay)
                continue

            if response.status_code == TOO_MANY_REQUESTS and throttled < self.throttle_retry_count:
                throttled += 1
                logger.info(f"[Gateway] Throttled on {url}, retry {throttled}/{self.throttle_retry_count}")
                self.sleep(self.throttle_retry_delay)
                continue

            return response
