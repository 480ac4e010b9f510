from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import requests

from ..auth.providers import Sessions
from ..config import AuthMode
from ..logging import get_logger
from ..models import Reservation
from ..util.errors import Outcome

LOG = get_logger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
SEND_TIMEOUT = (10, 30)

NOTIFICATION_THRESHOLDS = frozenset({1, 5, 10, 15, 30, 90, 180})

_PHRASES: Dict[int, str] = {
    180: "6 months",
    90: "3 months",
    30: "1 month",
    15: "15 days",
    10: "10 days",
    5: "5 days",
    1: "1 day",
}


def should_notify(days: int) -> bool:
    return days in NOTIFICATION_THRESHOLDS


def expiry_phrase(days: int) -> str:
    return _PHRASES.get(days, f"{days} days")


def build_message(reservation: Reservation, days: int, recipients: Sequence[str]) -> Dict[str, Any]:
    """Compose the Graph sendMail payload for one reservation."""
    phrase = expiry_phrase(days)
    name = reservation.display_name or reservation.reservation_id
    lines = [
        f"The Azure reservation '{name}' expires in {phrase}.",
        "",
        f"Reservation ID: {reservation.reservation_id}",
        f"SKU: {reservation.sku_name}",
        f"Quantity: {reservation.quantity}",
        f"Expiry date: {reservation.expiry_date:%Y-%m-%d}",
        f"Days remaining: {days}",
        "",
        "Review the reservation and renew it before it expires to keep the discounted rate.",
    ]
    return {
        "message": {
            "subject": f"Azure reservation expiring in {phrase}: {name}",
            "body": {"contentType": "Text", "content": "\n".join(lines)},
            "toRecipients": [{"emailAddress": {"address": addr}} for addr in recipients],
        },
        "saveToSentItems": False,
    }


class NotificationDispatcher:
    """
    Sends one expiry warning per call through Microsoft Graph.

    Interactive sessions send as the configured sender mailbox; trusted-identity
    sessions send from the identity's own mailbox context.
    """

    def __init__(
        self,
        sessions: Sessions,
        *,
        sender_email: str,
        recipients: Sequence[str],
        http: Optional[Any] = None,
        base_url: str = GRAPH_BASE_URL,
    ) -> None:
        self._sessions = sessions
        self._sender_email = sender_email
        self._recipients = tuple(recipients) or (sender_email,)
        self._http = http or requests
        self._base_url = base_url.rstrip("/")
        self.sent = 0

    def send_url(self) -> str:
        if self._sessions.auth_mode is AuthMode.TRUSTED_IDENTITY:
            return f"{self._base_url}/me/sendMail"
        return f"{self._base_url}/users/{self._sender_email}/sendMail"

    def send(self, reservation: Reservation, days: int) -> Outcome:
        try:
            token = self._sessions.mail_credential.get_token(self._sessions.mail_scope).token
            resp = self._http.post(
                self.send_url(),
                json=build_message(reservation, days, self._recipients),
                headers={"Authorization": f"Bearer {token}"},
                timeout=SEND_TIMEOUT,
            )
            resp.raise_for_status()
        except Exception as e:
            return Outcome.failure(f"{type(e).__name__}: {e}")
        self.sent += 1
        LOG.info(
            "Expiry warning sent",
            extra={
                "reservation_id": reservation.reservation_id,
                "days_remaining": days,
                "recipients": list(self._recipients),
            },
        )
        return Outcome.success()
