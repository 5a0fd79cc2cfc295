"""
Compliance Cloud - Notification Email Templates

Renders the email body for a delivery job.

Templates:
- document-expiry
- filing-reminder
- compliance-alert
- anything else falls back to the generic template
"""

from datetime import date
from html import escape
from typing import Any, Dict, Iterable, Optional, Tuple


SIGNATURE = "---\nCompliance Cloud\nAutomated Notification System"


def _format_date(value: Any) -> str:
    if not value:
        return "N/A"
    if isinstance(value, date):
        return value.strftime("%d %b %Y")
    try:
        return date.fromisoformat(str(value)[:10]).strftime("%d %b %Y")
    except ValueError:
        return str(value)


def _bullets(items: Optional[Iterable[str]], empty: str) -> str:
    lines = [f"- {item}" for item in (items or [])]
    return "\n".join(lines) if lines else empty


def _document_expiry(data: Dict[str, Any]) -> str:
    return (
        "This is a reminder that a document is expiring soon:\n\n"
        f"Document: {data.get('document_title')}\n"
        f"Client: {data.get('client_name')}\n"
        f"Expiry Date: {_format_date(data.get('expiry_date'))}\n"
        f"Days Until Expiry: {data.get('days_until_expiry')}\n"
        f"Urgency: {data.get('urgency_level')}\n\n"
        "Please take appropriate action to renew this document before it expires."
    )


def _filing_reminder(data: Dict[str, Any]) -> str:
    return (
        "This is a reminder that a filing deadline is approaching:\n\n"
        f"Filing Type: {data.get('filing_type')}\n"
        f"Client: {data.get('client_name')}\n"
        f"Period: {data.get('period_label') or 'N/A'}\n"
        f"Due Date: {_format_date(data.get('period_end'))}\n"
        f"Days Until Due: {data.get('days_until_due')}\n"
        f"Current Status: {data.get('status')}\n"
        f"Urgency: {data.get('urgency_level')}\n\n"
        "Please ensure this filing is completed and submitted before the deadline."
    )


def _compliance_alert(data: Dict[str, Any]) -> str:
    level = str(data.get("compliance_level") or "").upper()
    return (
        "Compliance Alert:\n\n"
        f"Client: {data.get('client_name')}\n"
        f"Compliance Score: {data.get('compliance_score')}%\n"
        f"Compliance Level: {level}\n\n"
        "Issues:\n"
        f"{_bullets(data.get('issues'), 'No issues listed')}\n\n"
        "Recommendations:\n"
        f"{_bullets(data.get('recommendations'), 'No recommendations listed')}\n\n"
        "Please review and take necessary action."
    )


def _generic(data: Dict[str, Any]) -> str:
    return data.get("message") or "You have a new notification from Compliance Cloud."


TEMPLATES = {
    "document-expiry": _document_expiry,
    "filing-reminder": _filing_reminder,
    "compliance-alert": _compliance_alert,
}


def compliance_alert_data(card, client_name: str) -> Dict[str, Any]:
    """Template data for a compliance-alert email built from a ScoreCard."""
    return {
        "client_id": str(card.client_id),
        "client_name": client_name,
        "compliance_score": float(card.score_value),
        "compliance_level": card.level,
        "issues": list(card.issues),
        "recommendations": list(card.recommendations),
    }


def render(template: str, data: Dict[str, Any], recipient_name: Optional[str] = None) -> Tuple[str, str]:
    """Return (text_body, html_body) for a template and its data."""
    body = TEMPLATES.get(template, _generic)(data)
    greeting = f"Dear {recipient_name or 'User'},"
    text = f"{greeting}\n\n{body}\n\n{SIGNATURE}"

    paragraphs = "".join(
        f"<p>{escape(block).replace(chr(10), '<br>')}</p>"
        for block in [greeting, body, SIGNATURE]
    )
    html = (
        '<html><body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">'
        f'<div style="max-width: 600px; margin: 0 auto; padding: 20px;">{paragraphs}</div>'
        "</body></html>"
    )
    return text, html
