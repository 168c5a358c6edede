# notifier.py
"""
Notification delivery channels for the reminder scheduler.

LoggingChannel only writes the notification to the log (local development).
WebPushChannel sends an encrypted Web Push message, signed with the server's
VAPID key, to every subscription registered for the family and prunes
subscriptions the push service reports as gone.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests
from pywebpush import WebPushException, webpush
from sqlalchemy.orm import sessionmaker

import crud
from config import Settings
from database import db_session

logger = logging.getLogger(__name__)

# subscription no longer exists on the push service; it is dropped
GONE_STATUSES = (404, 410)


class LoggingChannel:
    def deliver(
        self,
        family_id: str,
        title: str,
        body: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        logger.info("Notification for family %s: %s | %s | %s", family_id, title, body, metadata or {})
        return True


def _vapid_sub(subject: str) -> str:
    """VAPID 'sub' claim: a mailto: or https: contact URI."""
    if subject.startswith(("mailto:", "https:")):
        return subject
    return f"mailto:{subject}"


class WebPushChannel:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        vapid_private_key: str,
        vapid_subject: str,
        timeout: float = 5.0,
        ttl: int = 3600,
        icon: str = "/icon-192.png",
        http: Optional[requests.Session] = None,
    ):
        if not vapid_private_key:
            raise ValueError("a VAPID private key is required for web push")
        self._session_factory = session_factory
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = _vapid_sub(vapid_subject)
        self.timeout = timeout
        self.ttl = ttl
        self.icon = icon
        self._http = http or requests.Session()

    def _subscriptions(self, family_id: str) -> List[Tuple[int, Dict[str, Any]]]:
        with db_session(self._session_factory) as db:
            subs = []
            for s in crud.list_push_subscriptions(db, family_id):
                if not (s.p256dh and s.auth):
                    logger.warning("Push subscription %s has no encryption keys; skipping", s.id)
                    continue
                subs.append((s.id, {"endpoint": s.endpoint, "keys": {"p256dh": s.p256dh, "auth": s.auth}}))
            return subs

    def _prune(self, subscription_id: int, endpoint: str, status: int) -> None:
        with db_session(self._session_factory) as db:
            crud.delete_push_subscription(db, subscription_id)
        logger.info("Removed expired push subscription %s (%s, HTTP %s)", subscription_id, endpoint, status)

    def deliver(
        self,
        family_id: str,
        title: str,
        body: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        True if at least one subscription accepted the notification, or if
        there was nobody left to notify. False when every live one failed.
        """
        subs = self._subscriptions(family_id)
        if not subs:
            logger.debug("No push subscriptions for family %s", family_id)
            return True

        payload = json.dumps({
            "title": title,
            "body": body,
            "icon": self.icon,
            "badge": self.icon,
            "data": metadata or {},
        })
        accepted = failed = 0
        for sub_id, info in subs:
            endpoint = info["endpoint"]
            try:
                webpush(
                    subscription_info=info,
                    data=payload,
                    vapid_private_key=self.vapid_private_key,
                    # webpush adds aud/exp to the claims dict, so it gets a fresh one
                    vapid_claims={"sub": self.vapid_subject},
                    timeout=self.timeout,
                    ttl=self.ttl,
                    headers={"Urgency": "high"},
                    requests_session=self._http,
                )
            except WebPushException as e:
                status = getattr(e.response, "status_code", None)
                if status in GONE_STATUSES:
                    self._prune(sub_id, endpoint, status)
                    continue
                logger.warning("Push to %s rejected (HTTP %s): %s", endpoint, status, e)
                failed += 1
                continue
            except requests.RequestException as e:
                logger.warning("Push to %s failed: %s", endpoint, e)
                failed += 1
                continue
            accepted += 1

        return accepted > 0 or failed == 0


def build_channel(settings: Settings, session_factory: Optional[sessionmaker] = None):
    kind = settings.notification_channel
    if kind == "log":
        return LoggingChannel()
    if kind == "webpush":
        return WebPushChannel(
            session_factory,
            vapid_private_key=settings.vapid_private_key,
            vapid_subject=settings.vapid_subject,
            timeout=settings.delivery_timeout_seconds,
            ttl=settings.push_ttl_seconds,
            icon=settings.push_icon,
        )
    raise ValueError(f"Unknown NOTIFICATION_CHANNEL: {kind!r}")
