import time
from dataclasses import asdict, dataclass
from typing import List, Optional

from sqlalchemy import BigInteger, Column, Integer, String, Text

from .db import Base

ENRICHABLE_FIELDS = ("description", "category", "geo")


def _timestamp() -> int:
    return int(time.time())


@dataclass
class ChannelRecord:
    """A directory entry for one Telegram channel.

    ``id`` is 0 while the numeric identifier is still unknown; such records
    are keyed by ``username`` until a chat lookup resolves the id.
    """

    id: int
    username: str
    title: Optional[str] = None
    photo_element: Optional[str] = None
    description: Optional[str] = None
    subscribers: Optional[int] = None
    category: Optional[str] = None
    geo: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def missing_fields(self) -> List[str]:
        return [name for name in ENRICHABLE_FIELDS if not getattr(self, name)]

    def copy(self) -> "ChannelRecord":
        return ChannelRecord(**asdict(self))


@dataclass
class RawCandidate:
    """One entry of a similar-channels response."""

    id: int
    username: Optional[str]
    title: Optional[str] = None
    photo: Optional[str] = None
    html: Optional[str] = None


@dataclass
class ChatInfo:
    id: int
    username: str
    title: Optional[str] = None
    description: Optional[str] = None


class Channel(Base):
    __tablename__ = "channels"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    channel_id = Column(BigInteger, nullable=True, unique=True, index=True)
    username = Column(String, nullable=False, unique=True, index=True)
    title = Column(String, nullable=True)
    photo_element = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    subscribers = Column(BigInteger, nullable=True)
    category = Column(String, nullable=True, index=True)
    geo = Column(String, nullable=True, index=True)
    first_seen = Column(Integer, default=_timestamp)
    last_updated = Column(Integer, default=_timestamp)

    def to_record(self) -> ChannelRecord:
        return ChannelRecord(
            id=self.channel_id or 0,
            username=self.username,
            title=self.title,
            photo_element=self.photo_element,
            description=self.description,
            subscribers=self.subscribers,
            category=self.category,
            geo=self.geo,
        )

    def apply(self, record: ChannelRecord) -> None:
        if record.id:
            self.channel_id = record.id
        self.username = record.username
        self.title = record.title
        self.photo_element = record.photo_element
        self.description = record.description
        self.subscribers = record.subscribers
        self.category = record.category
        self.geo = record.geo
        self.update_timestamps()

    def update_timestamps(self, *, seen: Optional[int] = None) -> None:
        now = seen or int(time.time())
        if not self.first_seen:
            self.first_seen = now
        self.last_updated = now
