"""
Worker loop that delivers queued mail jobs.

The API only records a mail job and pushes its id on the queue; this process
claims the job, renders the message and hands it to the configured mailer.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from climblog.config import Settings, get_settings
from climblog.db import DbClient
from climblog.dependencies import get_db_client, get_mailer, get_queue_client
from climblog.mail import Mailer, render_message
from climblog.queue import JobQueue
from climblog.records import MailJobRecord, MailStatus

logger = logging.getLogger(__name__)


def process_job(
    job: MailJobRecord, db: DbClient, mailer: Mailer, settings: Optional[Settings] = None
) -> bool:
    """Send one claimed job. Returns True when the mail went out."""
    settings = settings or get_settings()
    try:
        message = render_message(
            job, frontend_url=settings.frontend_url, sender=settings.mail_from
        )
        mailer.send(message)
    except Exception as exc:
        # Delivery failures are recorded on the job; the loop keeps running.
        logger.exception("[%s] Failed to deliver %s mail", job.job_id, job.template.value)
        db.update_mail_job(job.job_id, MailStatus.FAILED, last_error=str(exc))
        return False

    db.update_mail_job(job.job_id, MailStatus.SENT)
    logger.info("[%s] Delivered %s mail to %s", job.job_id, job.template.value, job.recipient)
    return True


def process_next(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[JobQueue] = None,
    mailer: Optional[Mailer] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and process one job from the queue (or DB fallback). Returns True if processed.
    """
    db = db or get_db_client()
    queue = queue or get_queue_client()
    mailer = mailer or get_mailer()

    job_id = queue.dequeue(block=block, timeout=timeout)
    if job_id:
        job = db.claim_mail_job(job_id)
        if job is None:
            # Already claimed by another worker, or no longer pending.
            logger.warning("Received job_id %s from queue but it is not claimable", job_id)
            return False
    else:
        # Pick up pending jobs whose queue entry was lost.
        job = db.claim_next_pending_mail_job()
        if job is None:
            return False

    process_job(job, db, mailer)
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    db = get_db_client()
    queue = get_queue_client()
    mailer = get_mailer()
    while True:
        requeued = db.requeue_stale_locks(lock_timeout_seconds=900)
        if requeued:
            logger.info("Requeued %s stale mail jobs", requeued)
        processed = process_next(
            db=db,
            queue=queue,
            mailer=mailer,
            block=True,
            timeout=int(poll_interval_seconds),
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=get_settings().log_level)
    run_loop()
