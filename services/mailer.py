"""
Transactional mail.

MAIL_MODE=brevo posts to the Brevo transactional email API; MAIL_MODE=log only
writes the message to the `mail` logger (development and tests).
"""
from __future__ import annotations

import html as html_lib
import logging
from typing import Any

import requests


log = logging.getLogger("mail")


class MailError(RuntimeError):
    pass


def send_email(cfg: Any, *, to: str, subject: str, html: str, text: str = "") -> None:
    """Sends one message or raises MailError."""

    recipient = str(to or "").strip()
    if not recipient:
        raise MailError("Missing recipient")

    mode = str(getattr(cfg, "MAIL_MODE", "log") or "log").lower()
    if mode == "log":
        log.info("mail (log mode) to=%s subject=%s", recipient, subject)
        return

    payload: dict[str, Any] = {
        "sender": {"name": cfg.MAIL_FROM_NAME, "email": cfg.MAIL_FROM},
        "to": [{"email": recipient}],
        "subject": subject,
        "htmlContent": html,
    }
    if text:
        payload["textContent"] = text

    headers = {
        "accept": "application/json",
        "content-type": "application/json",
        "api-key": cfg.MAIL_API_KEY,
    }

    try:
        resp = requests.post(cfg.MAIL_API_URL, json=payload, headers=headers, timeout=int(cfg.MAIL_TIMEOUT_SECONDS))
        resp.raise_for_status()
    except requests.RequestException as e:
        raise MailError(f"Mail API request failed: {str(e)}")

    log.info("mail sent to=%s subject=%s", recipient, subject)


def send_verification_code_email(cfg: Any, *, to: str, code: str, ttl_minutes: int) -> None:
    send_email(
        cfg,
        to=to,
        subject="Your verification code",
        html=f"<p>Your code is <strong>{html_lib.escape(code)}</strong>. Expires in {int(ttl_minutes)} minutes.</p>",
        text=f"Your code is {code}. Expires in {int(ttl_minutes)} minutes.",
    )


def send_application_ack_email(cfg: Any, *, to: str, full_name: str) -> None:
    name = str(full_name or "").strip() or "applicant"
    send_email(
        cfg,
        to=to,
        subject="Thank you for your application",
        html=f"<p>Dear {html_lib.escape(name)},<br>Thanks for applying! We'll be in touch soon.</p>",
        text=f"Dear {name},\n\nWe've received your application.",
    )
