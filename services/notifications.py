from __future__ import annotations

import logging

from db import on_commit
from models import Request


log = logging.getLogger("notifications")


def queue_job_application_ack(db, req: Request) -> None:
    """Queues the applicant acknowledgement once the application is committed. Failures are only logged."""

    request_id = str(req.requestId)
    email = str(req.email or "").strip()
    full_name = str(req.fullName or "").strip()
    if not email:
        return

    def _enqueue():
        try:
            from app.tasks.notifications import send_job_application_ack

            send_job_application_ack.delay(request_id=request_id, email=email, full_name=full_name)
        except Exception:
            log.exception("failed to queue application ack request_id=%s", request_id)

    on_commit(db, _enqueue)
