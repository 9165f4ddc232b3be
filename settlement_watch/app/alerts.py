"""Chat webhook notifier for settlement alerts.

Messages are posted as the robot text payload::

    {"msgtype": "text",
     "text": {"content": "..."},
     "at": {"atMobiles": ["+8613800000000"], "isAtAll": false}}
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = "+86"


@dataclass
class DeliveryResult:
    """Outcome of a single webhook POST."""

    url: str
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None


def normalize_mention(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Prefix a phone-style mention target with the country code if it has none.

    Args:
        raw: Mention target, e.g. ``"13800000000"`` or ``"+1234"``
        country_code: Prefix to add, e.g. ``"+86"``

    Returns:
        Normalized target, e.g. ``"+8613800000000"``
    """
    value = raw.strip()
    if not value or value.startswith("+"):
        return value
    return f"{country_code}{value}"


def parse_mentions(value: Optional[str], country_code: str = DEFAULT_COUNTRY_CODE) -> List[str]:
    """Split a comma-separated mention list into normalized targets.

    Blank entries are dropped; order is kept and duplicates removed.
    """
    if not value:
        return []

    out: List[str] = []
    for part in value.split(","):
        mention = normalize_mention(part, country_code)
        if mention and mention not in out:
            out.append(mention)
    return out


def build_payload(content: str, mentions: Optional[Iterable[str]] = None) -> dict:
    """Build the robot text message body."""
    return {
        "msgtype": "text",
        "text": {"content": content},
        "at": {
            "atMobiles": list(mentions or []),
            "isAtAll": False,
        },
    }


def _robot_error(response: requests.Response) -> Optional[str]:
    # Robots answer 200 with {"errcode": <non-zero>, "errmsg": ...} on rejection
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("errcode") not in (None, 0):
        return f"errcode={body.get('errcode')} errmsg={body.get('errmsg')}"
    return None


def post_message(url: str, payload: dict, timeout: float = 10.0) -> DeliveryResult:
    """POST one payload to one webhook. Never raises, never retries."""
    try:
        response = requests.post(url, json=payload, timeout=timeout)
    except requests.RequestException as e:
        logger.error("Webhook POST to %s failed: %s", url, e)
        return DeliveryResult(url=url, ok=False, error=str(e))

    if not 200 <= response.status_code < 300:
        logger.error("Webhook %s answered HTTP %s", url, response.status_code)
        return DeliveryResult(url=url, ok=False, status=response.status_code,
                              error=f"HTTP {response.status_code}")

    robot_error = _robot_error(response)
    if robot_error:
        logger.error("Webhook %s rejected message: %s", url, robot_error)
        return DeliveryResult(url=url, ok=False, status=response.status_code, error=robot_error)

    logger.info("Message delivered to %s", url)
    return DeliveryResult(url=url, ok=True, status=response.status_code)


class WebhookNotifier:
    """Sends text messages to one or two robot webhooks."""

    def __init__(
        self,
        url: Optional[str],
        secondary_url: Optional[str] = None,
        mentions: Optional[Iterable[str]] = None,
        timeout: float = 10.0,
    ):
        self.urls = [u for u in (url, secondary_url) if u]
        self.mentions = list(mentions or [])
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "WebhookNotifier":
        return cls(
            url=settings.WEBHOOK_URL,
            secondary_url=settings.WEBHOOK_URL_SECONDARY,
            mentions=parse_mentions(settings.MENTIONS, settings.COUNTRY_CODE),
            timeout=settings.HTTP_TIMEOUT,
        )

    def send(self, content: str, mention: bool = True) -> List[DeliveryResult]:
        """Send ``content`` to every configured webhook.

        Args:
            content: Message text
            mention: Embed the configured mention targets

        Returns:
            One DeliveryResult per webhook, empty if none is configured
        """
        if not self.urls:
            logger.warning("No webhook configured, message dropped: %s", content)
            return []

        payload = build_payload(content, self.mentions if mention else None)
        logger.info("Sending message: %s", content)
        return [post_message(url, payload, timeout=self.timeout) for url in self.urls]


def delivered(results: List[DeliveryResult]) -> bool:
    """True when at least one webhook accepted the message."""
    return any(r.ok for r in results)
