"""Reminder email content.

Deliberately plain: subject line and a short HTML body with the claim
link. Styling belongs to the web front-end's mail templates.
"""

from __future__ import annotations

import html
from datetime import datetime

from src.core.models import ReminderType, Transfer

_TEMPLATES: dict[ReminderType, dict[str, str]] = {
    ReminderType.FIRST: {
        "subject": "Reminder: You have {amount} {token} waiting!",
        "heading": "Don't forget your crypto!",
        "message": "Someone sent you crypto, but you haven't claimed it yet.",
    },
    ReminderType.URGENT: {
        "subject": "Urgent: {amount} {token} expires soon!",
        "heading": "Time is running out!",
        "message": "Your crypto transfer will expire soon. Don't miss out!",
    },
    ReminderType.FINAL: {
        "subject": "FINAL NOTICE: {amount} {token} expires in 2 hours!",
        "heading": "LAST CHANCE!",
        "message": (
            "This is your final reminder. After expiry the funds "
            "will be returned to the sender."
        ),
    },
}


def parse_reminder_type(value: object) -> ReminderType:
    """Unknown or missing values fall back to the first reminder."""
    try:
        return ReminderType(value)
    except ValueError:
        return ReminderType.FIRST


def render_reminder(
    transfer: Transfer,
    reminder_type: ReminderType,
    frontend_url: str,
    now: datetime,
) -> tuple[str, str]:
    """Return (subject, html_body) for a reminder email."""
    template = _TEMPLATES[reminder_type]
    amount = f"{transfer.amount:g}"
    subject = template["subject"].format(amount=amount, token=transfer.token)

    hours_left = 0
    if transfer.expires_at is not None:
        hours_left = max(0, round((transfer.expires_at - now).total_seconds() / 3600))

    claim_url = f"{frontend_url.rstrip('/')}/claim"
    body = (
        "<!DOCTYPE html><html><body>"
        f"<h1>{html.escape(template['heading'])}</h1>"
        f"<p><strong>{html.escape(amount)} {html.escape(transfer.token)}</strong></p>"
        f"<p>{html.escape(template['message'])}</p>"
        f'<p><a href="{html.escape(claim_url)}">Claim {html.escape(amount)} {html.escape(transfer.token)}</a></p>'
        f"<p>Expires in approximately {hours_left} hours.</p>"
        "<p>If you've already claimed this, you can safely ignore this email.</p>"
        "</body></html>"
    )
    return subject, body
