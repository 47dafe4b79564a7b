"""Failure email notifier using SMTP environment variables.

Environment variables (read at send-time):
- SMTP_HOST (required)
- SMTP_PORT (optional; default 587)
- SMTP_USER (optional)
- SMTP_PASS (optional)
- SMTP_STARTTLS (optional; default "true")
- SMTP_FROM (required)
- SMTP_TO (required; comma-separated list)
"""

from __future__ import annotations

import logging
import os
import smtplib
from email.message import EmailMessage
from typing import List

from stackvault.core.config import _get_bool

logger = logging.getLogger(__name__)


def send_failure_email(subject: str, body: str) -> bool:
    """Send a plaintext email; returns False when not configured or delivery failed."""
    host = os.getenv("SMTP_HOST")
    from_addr = os.getenv("SMTP_FROM")
    to_addrs_raw = os.getenv("SMTP_TO")
    if not host or not from_addr or not to_addrs_raw:
        return False

    to_addrs: List[str] = [addr.strip() for addr in to_addrs_raw.split(",") if addr.strip()]
    if not to_addrs:
        return False

    port = int(os.getenv("SMTP_PORT", "587"))
    user = os.getenv("SMTP_USER")
    password = os.getenv("SMTP_PASS")
    use_starttls = _get_bool(os.getenv("SMTP_STARTTLS"), True)

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = ", ".join(to_addrs)
    msg.set_content(body)

    try:
        with smtplib.SMTP(host=host, port=port, timeout=15) as smtp:
            if use_starttls:
                smtp.starttls()
            if user:
                smtp.login(user, password or "")
            smtp.send_message(msg)
    except (OSError, smtplib.SMTPException) as exc:
        # a notification problem never changes the outcome of a run
        logger.warning("failure_email_not_sent | host=%s error=%s", host, exc)
        return False
    return True
