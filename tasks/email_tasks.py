import smtplib

from structlog import get_logger

from core.celery import celery_app
from core.config import settings

log = get_logger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_email_task(self, to_email: str, subject: str, body: str):
    """
    Send email asynchronously with Celery.
    Retries up to 3 times on failure.
    """
    from services.email import deliver

    if settings.TESTING or not settings.SMTP_PASSWORD:
        log.info("email_skipped", to=to_email, subject=subject)
        return {"status": "skipped", "to": to_email}

    try:
        deliver(to_email, subject, body)
        return {"status": "sent", "to": to_email, "subject": subject}
    except (smtplib.SMTPException, OSError) as exc:
        log.warning("email_task_failed", to=to_email, attempt=self.request.retries, error=str(exc))
        # Retry with exponential backoff
        countdown = min(2 ** self.request.retries, 60)
        raise self.retry(exc=exc, countdown=countdown)
