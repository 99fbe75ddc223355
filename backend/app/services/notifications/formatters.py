"""
Message formatting for appointment notifications.

One formatter per notification kind. Text is Telegram HTML; plain-text
and e-mail renditions are derived from it.
"""

import html
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

CONFIRMATION = "confirmation"
REMINDER = "reminder"
CANCELLATION = "cancellation"
RESCHEDULE = "reschedule"

KINDS = (CONFIRMATION, REMINDER, CANCELLATION, RESCHEDULE)

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class Message:
    subject: str
    text: str  # Telegram HTML

    @property
    def plain(self) -> str:
        return html.unescape(_TAG_RE.sub("", self.text))

    @property
    def email_html(self) -> str:
        return self.text.replace("\n", "<br>")


def _format_dt(date_str: str, time_str: str) -> str:
    """'2026-01-28', '14:00' → 'Wed 28 Jan 2026, 14:00'."""
    try:
        dt = datetime.strptime(f"{date_str} {time_str}", "%Y-%m-%d %H:%M")
    except (TypeError, ValueError):
        return f"{date_str} {time_str}"
    return dt.strftime("%a %d %b %Y, %H:%M")


def _service_lines(appointment: dict) -> list[str]:
    lines = []
    services = appointment.get("services") or []
    if services:
        lines.append(f"💇 {html.escape(', '.join(services))} · {appointment.get('duration_minutes', '')} min")
    if appointment.get("stylist_name"):
        lines.append(f"👤 {html.escape(appointment['stylist_name'])}")
    return lines


# ─────────────────────────────────────────────────────────────────────────────

def format_confirmation(appointment: dict) -> Message:
    when = _format_dt(appointment["date"], appointment["time"])
    lines = [
        "<b>✅ Your appointment is confirmed</b>",
        "",
        f"🗓 {when}",
        *_service_lines(appointment),
    ]
    return Message(subject=f"Appointment confirmed: {when}", text="\n".join(lines))


def format_reminder(appointment: dict) -> Message:
    when = _format_dt(appointment["date"], appointment["time"])
    lines = [
        "<b>⏰ Appointment reminder</b>",
        "",
        f"See you on {when}",
        *_service_lines(appointment),
    ]
    return Message(subject=f"Reminder: appointment on {when}", text="\n".join(lines))


def format_cancellation(appointment: dict) -> Message:
    when = _format_dt(appointment["date"], appointment["time"])
    lines = [
        "<b>❌ Your appointment was cancelled</b>",
        "",
        f"🗓 <s>{when}</s>",
        *_service_lines(appointment),
    ]
    return Message(subject=f"Appointment cancelled: {when}", text="\n".join(lines))


def format_reschedule(
    appointment: dict,
    old_date: Optional[str] = None,
    old_time: Optional[str] = None,
) -> Message:
    when = _format_dt(appointment["date"], appointment["time"])
    lines = ["<b>🔄 Your appointment was moved</b>", ""]
    if old_date and old_time:
        lines.append(f"🗓 <s>{_format_dt(old_date, old_time)}</s> → {when}")
    else:
        lines.append(f"🗓 {when}")
    lines.extend(_service_lines(appointment))
    return Message(subject=f"Appointment moved to {when}", text="\n".join(lines))


def format_message(kind: str, appointment: dict, **extra) -> Message:
    if kind == CONFIRMATION:
        return format_confirmation(appointment)
    if kind == REMINDER:
        return format_reminder(appointment)
    if kind == CANCELLATION:
        return format_cancellation(appointment)
    if kind == RESCHEDULE:
        return format_reschedule(appointment, extra.get("old_date"), extra.get("old_time"))
    raise ValueError(f"Unknown notification kind: {kind}")
