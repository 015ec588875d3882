"""Channel store gateway backed by SQLAlchemy."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import SessionFactory, create_db_engine, init_db, session_scope
from .errors import StoreError
from .models import ENRICHABLE_FIELDS, Channel, ChannelRecord

logger = logging.getLogger(__name__)


class ChannelStore:
    """Owns all reads and writes of channel records.

    Callers only ever see detached ``ChannelRecord`` copies. Session work runs
    off the event loop; writes are serialized through a single lock so
    concurrent workers never interleave inside an upsert.
    """

    def __init__(self, session_factory: SessionFactory):
        self._sessions = session_factory
        self._write_lock = threading.Lock()

    @classmethod
    def from_url(cls, database_url: str) -> "ChannelStore":
        engine = create_db_engine(database_url)
        return cls(init_db(engine))

    async def get_by_id(self, channel_id: int) -> Optional[ChannelRecord]:
        if not channel_id:
            return None
        return await asyncio.to_thread(self._get_by_id, channel_id)

    async def get_by_username(self, username: str) -> Optional[ChannelRecord]:
        if not username:
            return None
        return await asyncio.to_thread(self._get_by_username, username)

    async def get_many(self, channel_ids: Iterable[int]) -> Dict[int, ChannelRecord]:
        wanted = {channel_id for channel_id in channel_ids if channel_id}
        if not wanted:
            return {}
        return await asyncio.to_thread(self._get_many, wanted)

    async def filter(
        self, category: Optional[str] = None, geo: Optional[str] = None
    ) -> List[ChannelRecord]:
        return await asyncio.to_thread(self._filter, category, geo)

    async def upsert(self, record: ChannelRecord) -> ChannelRecord:
        """Insert or update ``record`` and return the stored state.

        The row is matched by id first and by username when the id is unknown
        or not stored yet. Raises ``StoreError`` when the write fails.
        """

        if not record.username:
            raise StoreError("Cannot store a channel without a username")
        return await asyncio.to_thread(self._upsert, record)

    def _get_by_id(self, channel_id: int) -> Optional[ChannelRecord]:
        with session_scope(self._sessions) as session:
            row = self._find_by_id(session, channel_id)
            return row.to_record() if row else None

    def _get_by_username(self, username: str) -> Optional[ChannelRecord]:
        with session_scope(self._sessions) as session:
            row = self._find_by_username(session, username)
            return row.to_record() if row else None

    def _get_many(self, wanted: set) -> Dict[int, ChannelRecord]:
        with session_scope(self._sessions) as session:
            rows = session.execute(
                select(Channel).where(Channel.channel_id.in_(wanted))
            ).scalars()
            return {row.channel_id: row.to_record() for row in rows}

    def _filter(self, category: Optional[str], geo: Optional[str]) -> List[ChannelRecord]:
        query = select(Channel)
        if category:
            query = query.where(Channel.category == category.strip().lower())
        if geo:
            query = query.where(Channel.geo == geo.strip().lower())
        with session_scope(self._sessions) as session:
            return [row.to_record() for row in session.execute(query).scalars()]

    def _upsert(self, record: ChannelRecord) -> ChannelRecord:
        with self._write_lock:
            try:
                with session_scope(self._sessions) as session:
                    row = self._match(session, record)
                    if row is None:
                        row = Channel()
                        session.add(row)
                    row.apply(record)
                    session.flush()
                    return row.to_record()
            except SQLAlchemyError as exc:
                raise StoreError(f"Failed to store channel '{record.username}': {exc}") from exc

    def _match(self, session: Session, record: ChannelRecord) -> Optional[Channel]:
        by_id = self._find_by_id(session, record.id) if record.id else None
        by_username = self._find_by_username(session, record.username)
        if by_id is None:
            return by_username
        if by_username is not None and by_username.pk != by_id.pk:
            # A placeholder row created before the id was known.
            if by_username.channel_id is None:
                self._fold_placeholder(record, by_username)
                session.delete(by_username)
                session.flush()
            else:
                raise StoreError(
                    f"Username '{record.username}' already belongs to channel {by_username.channel_id}"
                )
        return by_id

    @staticmethod
    def _fold_placeholder(record: ChannelRecord, placeholder: Channel) -> None:
        for name in ENRICHABLE_FIELDS:
            if not getattr(record, name) and getattr(placeholder, name):
                setattr(record, name, getattr(placeholder, name))
        logger.debug("Merged placeholder row for '%s' into channel %s", record.username, record.id)

    @staticmethod
    def _find_by_id(session: Session, channel_id: int) -> Optional[Channel]:
        return session.execute(
            select(Channel).where(Channel.channel_id == channel_id)
        ).scalar_one_or_none()

    @staticmethod
    def _find_by_username(session: Session, username: str) -> Optional[Channel]:
        return session.execute(
            select(Channel).where(Channel.username == username)
        ).scalar_one_or_none()
