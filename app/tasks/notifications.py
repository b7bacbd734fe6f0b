"""
Applicant notification tasks.
"""
from __future__ import annotations

import logging

from app.tasks import celery_app
from config import Config
from services.mailer import send_application_ack_email


log = logging.getLogger("notifications")


@celery_app.task(bind=True, max_retries=0, ignore_result=True)
def send_job_application_ack(self, request_id: str, email: str, full_name: str = ""):
    """
    Sends the "thank you for your application" email.

    Never retried; a failed send is logged and dropped.
    """
    cfg = Config()
    try:
        send_application_ack_email(cfg, to=email, full_name=full_name)
    except Exception:
        log.exception("application ack failed request_id=%s", request_id)
        return {"request_id": request_id, "status": "failed"}

    return {"request_id": request_id, "status": "sent"}
