import asyncio
import logging

from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from records.exceptions import TransitionRejected, WorkflowError
from records.permissions import is_approved
from records.realtime.live import DashboardView

logger = logging.getLogger(__name__)


async def _ws_error(ws, code: int, reason: str, message: str = '', *, close: bool = False):
    """
    Uniform error frame.
    App codes: 4xxx client errors, 5xxx server errors.
    """
    payload = {"type": "error", "code": code, "reason": reason, "message": message or reason}
    try:
        await ws.send_json(payload)
    finally:
        if close:
            await ws.close(code=code)


# reason -> websocket app code
TRANSITION_CODES = {
    'unauthorized': 4003,
    'not_found': 4004,
    'already_decided': 4009,
    'illegal_transition': 4010,
    'schedule_conflict': 4011,
}


class DashboardConsumer(AsyncJsonWebsocketConsumer):
    """One live dashboard per connection.

    Pushes ``{"type": "view", "data": ...}`` after every re-derivation and
    accepts ``{"action", "entity", "id", ...}`` frames for the mutators.
    """
    view_class = DashboardView

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not getattr(user, "is_authenticated", False):
            await self.close(code=4001)
            return
        if not is_approved(user):
            await self.close(code=4003)
            return
        self.user = user
        self._sends = set()
        self.view = self.view_class(user)
        self.view.add_listener(self._on_state)
        await self.accept()
        await self.view.start()

    def _on_state(self, state):
        # listeners are synchronous; frames go out in creation order
        task = asyncio.ensure_future(self.send_json({"type": "view", "data": state}))
        self._sends.add(task)
        task.add_done_callback(self._frame_sent)

    def _frame_sent(self, task):
        self._sends.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("View frame to %s not sent: %s", getattr(self.user, "username", "?"), exc)

    async def disconnect(self, close_code):
        view = getattr(self, "view", None)
        if view is not None:
            await view.close()
        for task in list(getattr(self, "_sends", ())):
            task.cancel()

    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict):
            await _ws_error(self, 4000, "invalid_payload")
            return
        action = content.get("action")
        if not isinstance(action, str) or not action:
            await _ws_error(self, 4002, "unsupported_action")
            return
        pk = content.get("id")
        if pk is not None and not isinstance(pk, int):
            await _ws_error(self, 4000, "invalid_id")
            return
        try:
            await self.view.dispatch(action, content.get("entity"), pk, status=content.get("status"))
        except TransitionRejected as exc:
            await _ws_error(self, TRANSITION_CODES.get(exc.code, 4000), exc.code, exc.message)
            return
        except WorkflowError as exc:
            logger.warning("Dashboard action %s failed: %s", action, exc.message)
            await _ws_error(self, 5003, exc.code, exc.message)
            return
        await self.send_json({"type": "ack", "action": action, "id": pk})

    async def decode_json(self, text_data):
        try:
            return await super().decode_json(text_data)
        except ValueError:
            return None
