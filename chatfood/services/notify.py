"""Best-effort outbound notifications (n8n webhooks).

Scheduled with FastAPI BackgroundTasks after the response. A failure here is
logged and dropped: it never changes order state and never reaches the caller.
"""
import json
import logging
from urllib.error import URLError
from urllib.request import Request as UrlRequest
from urllib.request import urlopen

from chatfood.core.config import settings

log = logging.getLogger("chatfood.notify")


def _post(url: str, payload: dict) -> bool:
    if not url:
        return False
    req = UrlRequest(
        url,
        data=json.dumps(payload).encode(),
        method="POST",
        headers={"Content-Type": "application/json"},
    )
    try:
        with urlopen(req, timeout=settings.notification_timeout_seconds) as resp:
            ok = 200 <= resp.status < 300
    except (URLError, OSError, ValueError) as e:
        log.warning("Notification to %s failed: %s", url, e)
        return False
    if not ok:
        log.warning("Notification to %s answered %s", url, resp.status)
    return ok


def notify_order_paid(order_id: str) -> bool:
    return _post(settings.order_notification_webhook_url, {"event": "order_paid", "order_id": order_id})


def request_review(order_id: str) -> bool:
    return _post(settings.review_request_webhook_url, {"event": "review_request", "order_id": order_id})
