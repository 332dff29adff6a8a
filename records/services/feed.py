"""
Change feed: row-level insert/update/delete events per table.

Events travel over the Channels layer on one group per table
(``feed.<table>``), so every connected dashboard process receives them.
Per-table order is the order in which :meth:`ChangeFeed.publish` is
called; there is no global order across tables.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

logger = logging.getLogger(__name__)

MESSAGE_TYPE = 'feed.change'
KINDS = ('insert', 'update', 'delete')


def group_name(table: str) -> str:
    return f'feed.{table}'


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    kind: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    seq: int = 0
    ts: str = ''

    @property
    def row(self) -> Optional[Dict[str, Any]]:
        """Post-image for insert/update, pre-image for delete."""
        if self.kind == 'delete':
            return self.old or self.new
        return self.new

    def as_message(self) -> Dict[str, Any]:
        return {
            'type': MESSAGE_TYPE,
            'table': self.table,
            'kind': self.kind,
            'new': self.new,
            'old': self.old,
            'seq': self.seq,
            'ts': self.ts,
        }

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> 'ChangeEvent':
        return cls(
            table=message['table'],
            kind=message['kind'],
            new=message.get('new'),
            old=message.get('old'),
            seq=message.get('seq') or 0,
            ts=message.get('ts') or '',
        )


class ChangeFeed:
    """Publishes change events onto the channel layer."""

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer
        self._seq = itertools.count(1)

    @property
    def channel_layer(self):
        return self._channel_layer or get_channel_layer()

    def stamp(self, table: str, kind: str, new=None, old=None) -> ChangeEvent:
        if kind not in KINDS:
            raise ValueError(f'unknown change kind: {kind}')
        return ChangeEvent(table=table, kind=kind, new=new, old=old,
                           seq=next(self._seq), ts=timezone.now().isoformat())

    def publish(self, event: ChangeEvent) -> None:
        layer = self.channel_layer
        if layer is None:
            return
        async_to_sync(layer.group_send)(group_name(event.table), event.as_message())

    async def apublish(self, event: ChangeEvent) -> None:
        layer = self.channel_layer
        if layer is None:
            return
        await layer.group_send(group_name(event.table), event.as_message())
