"""Notification gateway.

Posts human-facing updates and opens per-match discussion threads on the chat
side. The engine only supplies data (plain dicts); rendering is the receiver's
job. Updates are POSTed as JSON to a webhook. Without a webhook URL the
gateway runs in dry-run mode (logs the event, returns synthetic thread refs).
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

State = Dict[str, Any]


class NotificationGateway:
    """Interface consumed by the engine. The base class does nothing."""

    def post_tournament_update(self, scope: str, state: State) -> None:
        pass

    def create_match_thread(self, scope: str, match: State) -> Optional[str]:
        return None

    def archive_thread(self, thread_ref: str) -> None:
        pass

    def post_match_update(self, thread_ref: str, state: State) -> None:
        pass

    def raise_escalation(self, scope: str, state: State) -> None:
        pass


class WebhookNotificationGateway(NotificationGateway):
    """
    Sends every event as ``{"event": ..., "scope": ..., "payload": ...}``.

    ``create_match_thread`` expects the receiver to answer with
    ``{"thread_ref": "..."}``. Failures are logged, never raised: a chat outage
    must not roll back a recorded result.
    """

    def __init__(self, webhook_url: str = "", timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.dry_run = not webhook_url
        if self.dry_run:
            logger.warning("NOTIFY_WEBHOOK_URL not configured. Notifications run in dry-run mode.")

    @property
    def is_configured(self) -> bool:
        return not self.dry_run

    def _send(self, event: str, scope: Optional[str], payload: State) -> Optional[State]:
        if self.dry_run:
            logger.info(f"[DRY RUN] {event} scope={scope}: {payload}")
            return None
        try:
            response = self.session.post(
                self.webhook_url,
                json={"event": event, "scope": scope, "payload": payload},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to deliver {event} for scope {scope}: {e}")
            return None
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def post_tournament_update(self, scope: str, state: State) -> None:
        self._send("tournament_update", scope, state)

    def create_match_thread(self, scope: str, match: State) -> Optional[str]:
        if self.dry_run:
            self._send("create_match_thread", scope, match)
            return f"dry-run-{match.get('tournament_id')}-{match.get('match_id')}"
        body = self._send("create_match_thread", scope, match)
        if not body:
            return None
        return body.get("thread_ref")

    def archive_thread(self, thread_ref: str) -> None:
        self._send("archive_thread", None, {"thread_ref": thread_ref})

    def post_match_update(self, thread_ref: str, state: State) -> None:
        self._send("match_update", None, {"thread_ref": thread_ref, **state})

    def raise_escalation(self, scope: str, state: State) -> None:
        self._send("escalation", scope, state)


class Outbox:
    """
    Notifications collected while a tournament lock is held.

    ``flush()`` is called after the lock is released, so a slow chat backend
    never stalls other work on the same tournament.
    """

    def __init__(self, gateway: NotificationGateway):
        self.gateway = gateway
        self._pending: List[Callable[[], Any]] = []

    def __len__(self) -> int:
        return len(self._pending)

    def tournament_update(self, scope: str, state: State) -> None:
        self._pending.append(lambda: self.gateway.post_tournament_update(scope, state))

    def match_update(self, thread_ref: Optional[str], state: State) -> None:
        if thread_ref:
            self._pending.append(lambda: self.gateway.post_match_update(thread_ref, state))

    def archive(self, thread_ref: Optional[str]) -> None:
        if thread_ref:
            self._pending.append(lambda: self.gateway.archive_thread(thread_ref))

    def escalate(self, scope: str, state: State) -> None:
        self._pending.append(lambda: self.gateway.raise_escalation(scope, state))

    def flush(self) -> None:
        pending, self._pending = self._pending, []
        for send in pending:
            try:
                send()
            except Exception:
                logger.exception("Notification delivery failed")
