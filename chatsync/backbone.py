"""Persistence and real-time backbone.

``Backbone`` wraps an async SQLModel session factory with the CRUD surface the
chat core needs and publishes a ``ChangeEvent`` to the in-process
``ChangeFeed`` after every committed write. Each operation opens its own
session, so callers never share ORM state; rows handed to subscribers are
plain dicts.

The feed is keyed by channel id. Subscribing twice on the same channel
id for the same table just adds a listener to the existing channel; the
channel is dropped once its last listener leaves.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from chatsync.errors import TransientReadFailure, WriteRejected

logger = logging.getLogger(__name__)

EventType = Literal["INSERT", "UPDATE", "DELETE"]
ALL_EVENTS: frozenset[str] = frozenset({"INSERT", "UPDATE", "DELETE"})

Row = dict[str, Any]
RowPredicate = Callable[[Row], bool]
M = TypeVar("M", bound=SQLModel)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: EventType
    new: Row | None = None
    old: Row | None = None

    @property
    def record(self) -> Row:
        """The row the event is about: the new image, or the old one for deletes."""
        return self.new if self.new is not None else (self.old or {})


_CLOSED = object()


class Subscription:
    """One listener on a channel. Iterate it (async) to receive change events."""

    def __init__(
        self,
        feed: ChangeFeed,
        channel_id: str,
        table: str,
        predicate: RowPredicate | None,
        events: Iterable[str],
    ) -> None:
        self.feed = feed
        self.channel_id = channel_id
        self.table = table
        self.events = frozenset(events)
        self._predicate = predicate
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def offer(self, event: ChangeEvent) -> None:
        if self.closed or event.table != self.table or event.type not in self.events:
            return
        if self._predicate is not None and not self._predicate(event.record):
            return
        self._queue.put_nowait(event)

    async def get(self) -> ChangeEvent | None:
        """Next event, or None once the subscription has been closed."""
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item  # type: ignore[no-any-return]

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeFeed:
    def __init__(self) -> None:
        self._channels: dict[str, set[Subscription]] = {}

    def subscribe(
        self,
        table: str,
        *,
        channel_id: str,
        predicate: RowPredicate | None = None,
        events: Iterable[str] = ALL_EVENTS,
    ) -> Subscription:
        sub = Subscription(self, channel_id, table, predicate, events)
        self._channels.setdefault(channel_id, set()).add(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        listeners = self._channels.get(sub.channel_id)
        if listeners is None:
            return
        listeners.discard(sub)
        if not listeners:
            del self._channels[sub.channel_id]

    def publish(self, event: ChangeEvent) -> None:
        for listeners in list(self._channels.values()):
            for sub in list(listeners):
                sub.offer(event)

    @property
    def channel_ids(self) -> list[str]:
        return sorted(self._channels)

    def listener_count(self, channel_id: str) -> int:
        return len(self._channels.get(channel_id, ()))


def _table(model: type[SQLModel]) -> str:
    return str(model.__tablename__)


class Backbone:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def query(
        self,
        model: type[M],
        *where: Any,
        order_by: Iterable[Any] = (),
        limit: int | None = None,
    ) -> list[M]:
        stmt = select(model)
        if where:
            stmt = stmt.where(*where)
        for clause in order_by:
            stmt = stmt.order_by(clause)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self._session_factory() as db:
                return list((await db.execute(stmt)).scalars().all())
        except SQLAlchemyError as err:
            raise TransientReadFailure(f"Failed to read {_table(model)}") from err

    async def first(self, model: type[M], *where: Any, order_by: Iterable[Any] = ()) -> M | None:
        rows = await self.query(model, *where, order_by=order_by, limit=1)
        return rows[0] if rows else None

    async def get(self, model: type[M], ident: Any) -> M | None:
        try:
            async with self._session_factory() as db:
                return await db.get(model, ident)
        except SQLAlchemyError as err:
            raise TransientReadFailure(f"Failed to read {_table(model)}") from err

    async def count(self, model: type[SQLModel], *where: Any) -> int:
        stmt = select(func.count()).select_from(model)
        if where:
            stmt = stmt.where(*where)
        try:
            async with self._session_factory() as db:
                return int((await db.execute(stmt)).scalar_one())
        except SQLAlchemyError as err:
            raise TransientReadFailure(f"Failed to count {_table(model)}") from err

    # -----------------------------------------------------------------------
    # Writes: each publishes after commit
    # -----------------------------------------------------------------------

    async def insert(self, row: M) -> M:
        table = _table(type(row))
        try:
            async with self._session_factory() as db:
                db.add(row)
                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as err:
            raise WriteRejected(f"Insert into {table} rejected") from err
        self.feed.publish(ChangeEvent(table=table, type="INSERT", new=row.model_dump()))
        return row

    async def update(self, model: type[M], *where: Any, patch: dict[str, Any]) -> list[M]:
        table = _table(model)
        olds: list[Row] = []
        try:
            async with self._session_factory() as db:
                rows = list((await db.execute(select(model).where(*where))).scalars().all())
                for row in rows:
                    olds.append(row.model_dump())
                    for key, value in patch.items():
                        setattr(row, key, value)
                    db.add(row)
                await db.commit()
                for row in rows:
                    await db.refresh(row)
        except SQLAlchemyError as err:
            raise WriteRejected(f"Update of {table} rejected") from err
        for old, row in zip(olds, rows):
            self.feed.publish(ChangeEvent(table=table, type="UPDATE", new=row.model_dump(), old=old))
        return rows

    async def upsert(self, row: M) -> M:
        """Insert ``row`` or overwrite the existing row with the same primary key."""
        model = type(row)
        table = _table(model)
        try:
            async with self._session_factory() as db:
                existing = await db.get(model, _primary_key(row))
                old = existing.model_dump() if existing is not None else None
                merged = await db.merge(row)
                await db.commit()
                await db.refresh(merged)
        except SQLAlchemyError as err:
            raise WriteRejected(f"Upsert into {table} rejected") from err
        self.feed.publish(
            ChangeEvent(
                table=table,
                type="INSERT" if old is None else "UPDATE",
                new=merged.model_dump(),
                old=old,
            )
        )
        return merged

    async def delete(self, model: type[M], *where: Any) -> list[M]:
        table = _table(model)
        try:
            async with self._session_factory() as db:
                rows = list((await db.execute(select(model).where(*where))).scalars().all())
                for row in rows:
                    await db.delete(row)
                await db.commit()
        except SQLAlchemyError as err:
            raise WriteRejected(f"Delete from {table} rejected") from err
        for row in rows:
            self.feed.publish(ChangeEvent(table=table, type="DELETE", old=row.model_dump()))
        return rows

    # -----------------------------------------------------------------------
    # Subscriptions
    # -----------------------------------------------------------------------

    def subscribe(
        self,
        model: type[SQLModel],
        *,
        channel_id: str,
        predicate: RowPredicate | None = None,
        events: Iterable[str] = ALL_EVENTS,
    ) -> Subscription:
        logger.debug("subscribe channel=%s table=%s", channel_id, _table(model))
        return self.feed.subscribe(
            _table(model), channel_id=channel_id, predicate=predicate, events=events
        )


def _primary_key(row: SQLModel) -> Any:
    mapper = row.__class__.__mapper__  # type: ignore[attr-defined]
    values = tuple(getattr(row, col.key) for col in mapper.primary_key)
    return values[0] if len(values) == 1 else values
