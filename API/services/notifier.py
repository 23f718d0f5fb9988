"""
Event notifier: hands billing events to the real-time broadcaster.

Services call publish() only after their transaction has committed.
Delivery is best effort: a failed publish is logged and never reaches
the caller.
"""
import asyncio
import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from core.config import settings

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    subscription_created = "subscription_created"
    subscription_renewed = "subscription_renewed"
    subscription_cancelled = "subscription_cancelled"
    subscription_updated = "subscription_updated"
    invoice_created = "invoice_created"
    invoice_paid = "invoice_paid"
    invoice_updated = "invoice_updated"
    invoice_deleted = "invoice_deleted"
    payment_created = "payment_created"
    payment_succeeded = "payment_succeeded"
    payment_failed = "payment_failed"
    payment_refunded = "payment_refunded"
    payment_updated = "payment_updated"


class Notifier:
    """Event sink interface."""

    def publish(self, event_type: str, tenant_id: int, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes events to the log. Default when no broadcaster is configured."""

    def publish(self, event_type: str, tenant_id: int, payload: Dict[str, Any]) -> None:
        logger.info(f"[tenant {tenant_id}] {event_type}: {payload.get('id')}")


class BroadcastNotifier(Notifier):
    """Client for pushing events to the websocket broadcaster service via HTTP."""

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.broadcaster_timeout

    def build_message(self, event_type: str, tenant_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": str(getattr(event_type, "value", event_type)),
            "tenant_id": tenant_id,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def publish(self, event_type: str, tenant_id: int, payload: Dict[str, Any]) -> None:
        """Fire and forget on a daemon thread."""
        message = self.build_message(event_type, tenant_id, payload)

        def run():
            loop = asyncio.new_event_loop()
            try:
                loop.run_until_complete(self._post("/broadcast", message))
            finally:
                loop.close()

        threading.Thread(target=run, daemon=True).start()

    async def _post(self, path: str, message: dict) -> Dict[str, Any]:
        tenant_id = message.get("tenant_id")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.base_url}{path}", json=message)
                if resp.status_code < 300:
                    return {"success": True}
                logger.warning(f"[tenant {tenant_id}] Broadcaster answered HTTP {resp.status_code}")
                return {"success": False, "error": f"HTTP {resp.status_code}"}
        except httpx.ConnectError:
            logger.warning(f"[tenant {tenant_id}] Broadcaster unavailable")
            return {"success": False, "error": "Broadcaster unavailable"}
        except Exception as e:
            logger.error(f"[tenant {tenant_id}] Event delivery error: {e}")
            return {"success": False, "error": str(e)}


def build_notifier(base_url: Optional[str] = None) -> Notifier:
    """Broadcaster client when a URL is configured, log-only otherwise."""
    url = settings.broadcaster_url if base_url is None else base_url
    if url:
        return BroadcastNotifier(url)
    return LogNotifier()
