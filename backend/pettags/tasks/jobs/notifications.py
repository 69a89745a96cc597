import logging

from pettags.integrations.sendgrid.client import send_email
from pettags.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(autoretry_for=(RuntimeError,), retry_backoff=True, max_retries=3)
def send_email_job(to: str, subject: str, html: str) -> None:
    """Deliver one transactional email; SendGrid errors are retried with backoff."""
    send_email(to, subject, html)
    logger.info("Sent email %r to %s", subject, to)
