"""Dashboard websocket: connect rules, live updates and actions."""
import asyncio
from types import SimpleNamespace

import pytest
from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser

from conftest import make_account, make_patient
from records.realtime import consumers
from records.realtime.consumers import DashboardConsumer


async def connect_as(user):
    communicator = WebsocketCommunicator(DashboardConsumer.as_asgi(), "/ws/dashboard/")
    communicator.scope["user"] = user
    connected, code = await communicator.connect()
    return communicator, connected, code


async def receive_until(communicator, predicate, limit=30):
    """Read frames until one satisfies ``predicate``; return it."""
    for _ in range(limit):
        frame = await communicator.receive_json_from(timeout=3)
        if predicate(frame):
            return frame
    raise AssertionError('expected frame never arrived')


async def receive_all(communicator, *predicates, limit=30):
    """Read frames until every predicate has matched one, in any order."""
    waiting = list(predicates)
    for _ in range(limit):
        frame = await communicator.receive_json_from(timeout=3)
        waiting = [p for p in waiting if not p(frame)]
        if not waiting:
            return
    raise AssertionError("expected frames never arrived")


def view_frame(check):
    return lambda f: f.get("type") == "view" and not f["data"]["loading"] and check(f["data"])


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_anonymous_and_unapproved_are_refused():
    _, connected, code = await connect_as(AnonymousUser())
    assert not connected and code == 4001

    newcomer = await database_sync_to_async(make_account)("newcomer", "student", approved=False)
    _, connected, code = await connect_as(newcomer)
    assert not connected and code == 4003


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_doctor_approves_over_websocket():
    student = await database_sync_to_async(make_account)("student1", "student")
    doctor = await database_sync_to_async(make_account)("doctor1", "doctor")
    patient = await database_sync_to_async(make_patient)(student)

    communicator, connected, _ = await connect_as(doctor)
    assert connected
    try:
        await receive_until(communicator, view_frame(lambda d: d["summary"]["pendingPatients"] == 1))

        await communicator.send_json_to({"action": "approve", "entity": "patient", "id": patient.id})
        await receive_all(
            communicator,
            lambda f: f.get("type") == "ack" and f["id"] == patient.id,
            view_frame(lambda d: d["summary"]["pendingPatients"] == 0 and d["summary"]["approvedPatients"] == 1),
        )

        # the second decision on the same patient is refused
        await communicator.send_json_to({"action": "reject", "entity": "patient", "id": patient.id})
        error = await receive_until(communicator, lambda f: f.get("type") == "error")
        assert error["code"] == 4009 and error["reason"] == "already_decided"
    finally:
        await communicator.disconnect()


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_student_sees_approval_and_notification_live():
    student = await database_sync_to_async(make_account)("student1", "student")
    doctor = await database_sync_to_async(make_account)("doctor1", "doctor")
    patient = await database_sync_to_async(make_patient)(student)

    communicator, connected, _ = await connect_as(student)
    assert connected
    try:
        await receive_until(communicator, view_frame(lambda d: d["summary"]["patients"] == 1))

        from records.services import workflow
        await database_sync_to_async(workflow.approve_patient)(doctor, patient.id)

        frame = await receive_until(communicator, view_frame(
            lambda d: d["notifications"]["unreadCount"] == 1
            and d["patients"]["items"][0]["status"] == "approved"
        ))
        assert frame["data"]["patients"]["items"][0]["medical_history"] == "asthma"
        assert frame["data"]["notifications"]["notifications"][0]["title"] == "Patient approved"

        # students cannot decide
        await communicator.send_json_to({"action": "approve", "entity": "user", "id": doctor.id})
        error = await receive_until(communicator, lambda f: f.get("type") == "error")
        assert error["code"] == 4010
    finally:
        await communicator.disconnect()


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_malformed_frames_get_error_replies():
    doctor = await database_sync_to_async(make_account)("doctor1", "doctor")
    communicator, connected, _ = await connect_as(doctor)
    assert connected
    try:
        await communicator.send_to(text_data="not json")
        error = await receive_until(communicator, lambda f: f.get("type") == "error")
        assert error["code"] == 4000

        await communicator.send_json_to({"entity": "patient"})
        error = await receive_until(communicator, lambda f: f.get("type") == "error")
        assert error["reason"] == "unsupported_action"

        await communicator.send_json_to({"action": "approve", "entity": "patient", "id": "7"})
        error = await receive_until(communicator, lambda f: f.get("type") == "error")
        assert error["reason"] == "invalid_id"
    finally:
        await communicator.disconnect()


@pytest.mark.asyncio
async def test_failed_view_frame_is_logged_and_released(monkeypatch):
    warnings = []
    monkeypatch.setattr(consumers.logger, "warning", lambda msg, *args: warnings.append(msg % args))
    consumer = DashboardConsumer()
    consumer.user = SimpleNamespace(username="student1")
    consumer._sends = set()

    async def broken_send(content, close=False):
        raise ConnectionResetError("socket gone")

    consumer.send_json = broken_send
    consumer._on_state({"summary": {}})
    assert len(consumer._sends) == 1
    for _ in range(5):
        await asyncio.sleep(0)
    assert consumer._sends == set()
    assert warnings == ["View frame to student1 not sent: socket gone"]
