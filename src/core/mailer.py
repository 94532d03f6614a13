"""
Outbound email through an HTTP mail relay. Without MAIL_WEBHOOK_URL the message is only logged.
"""

from typing import Any, Dict, List

import requests

from .config import MAIL_SENDER, SIDE_EFFECT_TIMEOUT_SEC, get_mail_webhook_url
from .dao import get_memo, get_users

from util.logging import logger


class MailError(Exception):
    """Custom exception for mail relay failures."""
    pass


def send_email(to: List[str], subject: str, text: str) -> Dict[str, Any]:
    """POST one message to the relay; raises MailError on transport or HTTP failure."""
    url = get_mail_webhook_url()
    if not url:
        logger.info(f"Mail relay not configured; skipped '{subject}' to {len(to)} recipient(s)")
        return {"sent": False, "reason": "relay not configured"}

    try:
        response = requests.post(
            url,
            json={"from": MAIL_SENDER, "to": to, "subject": subject, "text": text},
            timeout=SIDE_EFFECT_TIMEOUT_SEC,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        raise MailError(f"Mail relay request failed: {e}") from e

    return {"sent": True, "recipients": len(to)}


def email_memo(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Email the users named in the payload about a memo."""
    memo = get_memo(payload["memoId"])
    if memo is None:
        raise LookupError(f"Memo {payload['memoId']} not found")

    users = get_users(payload.get("userIds", []))
    addresses = [user.email for user in users.values() if user.email]
    if not addresses:
        return {"sent": False, "reason": "no recipients"}

    result = send_email(addresses, payload.get("subject", memo.subject), payload.get("text", memo.content))
    logger.log_side_effect("email", memo.id, details={"recipients": len(addresses), "sent": result["sent"]})
    return result
