"""
Outbound Webhook Module

Fire-and-forget HTTP notifications for balance-affecting operations.
Delivery is best effort: failures are logged and never reach the caller.
"""

import httpx
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger("backoffice.webhooks")


class WebhookNotifier:
    """POSTs lifecycle events to a configured URL"""

    def __init__(
        self,
        url: str = "",
        timeout: float = 2.0,  # keep short, delivery must never hold up a request
        async_delivery: bool = True,
        client: Optional[httpx.Client] = None
    ):
        self.url = url
        self.timeout = timeout
        self.async_delivery = async_delivery
        self.enabled = bool(url)
        self._client = client or httpx.Client(timeout=timeout)

    def emit(self, event_type: str, data: Dict[str, Any]) -> None:
        """Send an event without waiting for (or failing on) the result"""
        if not self.enabled:
            return

        payload = {
            "event": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data
        }

        if self.async_delivery:
            thread = threading.Thread(
                target=self._deliver, args=(payload,), name="webhook-delivery", daemon=True
            )
            thread.start()
        else:
            self._deliver(payload)

    def _deliver(self, payload: Dict[str, Any]) -> bool:
        try:
            response = self._client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Webhook delivery of {payload['event']} failed: {e}")
            return False

        if response.status_code >= 300:
            logger.warning(
                f"Webhook returned {response.status_code} for {payload['event']}: {response.text}"
            )
            return False
        return True

    def close(self):
        """Close the HTTP client"""
        self._client.close()


class RecordingWebhookNotifier(WebhookNotifier):
    """Keeps emitted events in memory instead of sending them"""

    def __init__(self):
        super().__init__(url="memory://", async_delivery=False)
        self.events: List[Dict[str, Any]] = []

    def _deliver(self, payload: Dict[str, Any]) -> bool:
        self.events.append(payload)
        return True

    def event_types(self) -> List[str]:
        return [event["event"] for event in self.events]
