"""Notification fan-out, outbox retries and the read-state API."""
import pytest

from records.exceptions import FanoutFailed, NotFound, StoreUnavailable
from records.models import Notification, NotificationJob, Patient
from records.services import notifications, outbox, workflow
from records.services.notifications import NotificationEvent
from records.services.store import get_store


class BrokenStore:
    """Reads work, the batched notification insert does not."""

    def __init__(self):
        self.real = get_store()
        self.writes = 0

    def select(self, *args, **kwargs):
        return self.real.select(*args, **kwargs)

    def insert_many(self, table, rows):
        self.writes += 1
        raise StoreUnavailable('connection reset')


def test_pending_audience_is_approved_active_approvers(accounts):
    ids = notifications.audience(NotificationEvent('TreatmentPendingApproval', {}), get_store())
    assert ids == sorted([accounts['doctor'].id, accounts['admin'].id])


def test_audience_deduplicates_and_skips_missing(accounts):
    student = accounts['student']
    event = NotificationEvent('PatientApprovalStatus', {'added_by_id': student.id})
    assert notifications.audience(event, get_store()) == [student.id]
    assert notifications.audience(NotificationEvent('UserApproved', {}), get_store()) == []
    with pytest.raises(ValueError):
        notifications.audience(NotificationEvent('Unknown', {}), get_store())


def test_notify_writes_one_row_per_recipient(accounts):
    recipients = notifications.notify(NotificationEvent('PatientPendingApproval', {
        'patient_id': 5, 'patient_name': 'Jane Roe', 'added_by_name': 'Sam Student',
    }))
    assert len(recipients) == 2
    rows = Notification.objects.filter(related_entity_id=5)
    assert rows.count() == 2
    assert {r.user_id for r in rows} == set(recipients)
    assert all(r.is_read is False and r.type == 'approval' for r in rows)


def test_notify_failure_is_reported(accounts):
    with pytest.raises(FanoutFailed) as exc:
        notifications.notify(NotificationEvent('TreatmentPendingApproval', {}), store=BrokenStore())
    assert exc.value.context['event_type'] == 'TreatmentPendingApproval'
    assert Notification.objects.count() == 0


def test_outbox_retries_then_fails(accounts, settings):
    settings.OUTBOX_MAX_ATTEMPTS = 2
    job = outbox.enqueue('TreatmentPendingApproval', {'treatment_id': 1}, drain_on_commit=False)
    store = BrokenStore()

    assert outbox.drain(store=store) == {'processed': 1, 'delivered': 0, 'undelivered': 1}
    job.refresh_from_db()
    assert job.status == 'pending' and job.attempts == 1 and 'connection reset' in job.last_error

    outbox.drain(store=store)
    job.refresh_from_db()
    assert job.status == 'failed' and job.attempts == 2 and job.processed_at is not None
    # failed jobs are not picked up again
    assert outbox.drain(store=store)['processed'] == 0
    assert store.writes == 2


def test_outbox_delivers_after_transient_failure(accounts):
    job = outbox.enqueue('PatientApprovalStatus', {
        'patient_id': 1, 'patient_name': 'Jane Roe', 'status': 'approved',
        'added_by_id': accounts['student'].id,
    }, drain_on_commit=False)
    assert outbox.drain_job(job.id, store=BrokenStore()) is None
    assert outbox.drain_job(job.id) == [accounts['student'].id]
    job.refresh_from_db()
    assert job.status == 'done' and job.attempts == 2 and job.last_error == ''


def test_claim_is_exclusive(db):
    job = outbox.enqueue('UserApproved', {'user_id': None}, drain_on_commit=False)
    assert outbox.claim(job.id) is True
    assert outbox.claim(job.id) is False
    assert outbox.drain_job(job.id) is None
    assert outbox.requeue_running() == 1
    assert outbox.claim(job.id) is True


def test_unknown_event_type_is_not_enqueued(db):
    with pytest.raises(ValueError):
        outbox.enqueue('SomethingElse', {})


def test_decision_stands_when_fanout_fails(accounts, monkeypatch, django_capture_on_commit_callbacks):
    def boom(event, *, store=None):
        raise FanoutFailed('notification insert failed')

    monkeypatch.setattr(outbox, 'notify', boom)
    with django_capture_on_commit_callbacks(execute=True):
        row = workflow.submit_patient(accounts['student'], {'first_name': 'Jane', 'last_name': 'Roe'})
    assert Patient.objects.get(id=row['id']).status == 'pending'
    job = NotificationJob.objects.get()
    assert job.status == 'pending' and job.attempts == 1
    assert Notification.objects.count() == 0


def test_read_state(accounts):
    student, other = accounts['student'], accounts['other_student']
    for n in range(3):
        Notification.objects.create(user=student, title=f'n{n}', message='m')
    foreign = Notification.objects.create(user=other, title='x', message='m')

    assert notifications.unread_count(student) == 3
    first = notifications.list_for_user(student)[0]
    row = notifications.mark_read(student, first['id'])
    assert row['is_read'] is True
    # already read: no-op
    assert notifications.mark_read(student, first['id'])['is_read'] is True
    with pytest.raises(NotFound):
        notifications.mark_read(student, foreign.id)

    assert notifications.mark_all_read(student) == 2
    assert notifications.mark_all_read(student) == 0
    assert notifications.unread_count(student) == 0
    assert notifications.unread_count(other) == 1

    notifications.delete_notification(student, first['id'])
    with pytest.raises(NotFound):
        notifications.delete_notification(student, first['id'])
    assert len(notifications.list_for_user(student)) == 2
