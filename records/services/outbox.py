"""
Notification outbox.

Workflow decisions enqueue a :class:`NotificationJob` inside their own
transaction.  Jobs are drained after commit (and by the ``drain_outbox``
command); a drain failure never touches the decision that queued it.
A job is claimed with a compare-and-set so it fans out at most once per
attempt, and goes back to ``pending`` until ``max_attempts`` is spent.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from records.exceptions import FanoutFailed
from records.models import NotificationJob
from records.services.notifications import EVENT_TYPES, NotificationEvent, notify

logger = logging.getLogger(__name__)


def enqueue(event_type: str, payload: Dict[str, Any], *, drain_on_commit: Optional[bool] = None) -> NotificationJob:
    if event_type not in EVENT_TYPES:
        raise ValueError(f'unknown notification event: {event_type}')
    job = NotificationJob.objects.create(
        event_type=event_type,
        payload=payload,
        max_attempts=getattr(settings, 'OUTBOX_MAX_ATTEMPTS', 5),
    )
    if drain_on_commit is None:
        drain_on_commit = getattr(settings, 'OUTBOX_DRAIN_ON_COMMIT', True)
    if drain_on_commit:
        job_id = job.id
        transaction.on_commit(lambda: drain_job(job_id), robust=True)
    return job


def claim(job_id: int) -> bool:
    """pending -> running, attempts + 1; False when someone else has it."""
    return NotificationJob.objects.filter(id=job_id, status=NotificationJob.STATUS_PENDING).update(
        status=NotificationJob.STATUS_RUNNING, attempts=F('attempts') + 1,
    ) == 1


def mark_job_failed(job: NotificationJob, error: str) -> NotificationJob:
    """Back to pending for another try, or failed once attempts are spent."""
    job.last_error = error
    if job.attempts < job.max_attempts:
        job.status = NotificationJob.STATUS_PENDING
    else:
        job.status = NotificationJob.STATUS_FAILED
        job.processed_at = timezone.now()
    job.save(update_fields=['last_error', 'status', 'processed_at'])
    return job


def drain_job(job_id: int, *, store=None) -> Optional[List[int]]:
    """Fan out one job; returns the recipients, or None if not delivered."""
    if not claim(job_id):
        return None
    job = NotificationJob.objects.get(id=job_id)
    try:
        with transaction.atomic():
            recipients = notify(NotificationEvent(job.event_type, job.payload), store=store)
    except FanoutFailed as exc:
        logger.warning("Outbox job %s (%s) attempt %s/%s failed: %s",
                       job.id, job.event_type, job.attempts, job.max_attempts, exc.message)
        mark_job_failed(job, exc.message)
        return None
    job.status = NotificationJob.STATUS_DONE
    job.processed_at = timezone.now()
    job.last_error = ''
    job.save(update_fields=['status', 'processed_at', 'last_error'])
    return recipients


def drain(limit: Optional[int] = None, *, store=None) -> Dict[str, int]:
    limit = limit or getattr(settings, 'OUTBOX_DRAIN_BATCH', 50)
    ids = list(
        NotificationJob.objects.filter(status=NotificationJob.STATUS_PENDING)
        .order_by('created_at', 'id').values_list('id', flat=True)[:limit]
    )
    stats = {'processed': 0, 'delivered': 0, 'undelivered': 0}
    for job_id in ids:
        recipients = drain_job(job_id, store=store)
        stats['processed'] += 1
        if recipients is None:
            stats['undelivered'] += 1
        else:
            stats['delivered'] += 1
    return stats


def requeue_running() -> int:
    """Return jobs stuck in ``running`` (worker died mid-drain) to pending."""
    return NotificationJob.objects.filter(status=NotificationJob.STATUS_RUNNING).update(
        status=NotificationJob.STATUS_PENDING,
    )
