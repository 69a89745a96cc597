from __future__ import annotations

import logging

from flask import current_app

from ...integrations.sendgrid.client import send_email

logger = logging.getLogger(__name__)


def dispatch_email(to: str | None, subject: str, html: str) -> bool:
    """Fire-and-forget email. Never raises; failures are only logged.

    Queued on Celery when a broker is configured, otherwise sent inline.
    Returns True when the message was handed off successfully.
    """
    if not to:
        logger.info("Skipping email %r: no recipient", subject)
        return False
    try:
        if current_app.config.get("CELERY_BROKER_URL"):
            from ...tasks.jobs.notifications import send_email_job
            send_email_job.delay(to, subject, html)
        else:
            send_email(to, subject, html)
        return True
    except Exception as e:
        logger.warning("Email %r to %s failed: %s", subject, to, e)
        return False
