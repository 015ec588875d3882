import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Set, Tuple

from ..errors import ValidationError
from ..models import ChannelRecord, RawCandidate
from .subscribers import extract_subscribers

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
    done: List[ChannelRecord] = field(default_factory=list)
    incomplete: List[ChannelRecord] = field(default_factory=list)
    # Complete records whose volatile fields, id or username changed and need writing back.
    refreshed: List[ChannelRecord] = field(default_factory=list)
    rejected: List[Tuple[RawCandidate, ValidationError]] = field(default_factory=list)


def _refresh_volatile(record: ChannelRecord, candidate: RawCandidate) -> bool:
    before = (record.title, record.photo_element, record.subscribers)
    if candidate.title:
        record.title = candidate.title
    if candidate.photo:
        record.photo_element = candidate.photo
    subscribers = extract_subscribers(candidate.html)
    if subscribers is not None:
        record.subscribers = subscribers
    return before != (record.title, record.photo_element, record.subscribers)


def reconcile(
    candidates: Iterable[RawCandidate],
    existing_by_id: Mapping[int, ChannelRecord],
    existing_by_username: Optional[Mapping[str, ChannelRecord]] = None,
    *,
    skip_ids: Iterable[int] = (),
    skip_usernames: Iterable[str] = (),
) -> Reconciliation:
    """Split raw candidates into already complete records and work items.

    Work items keep every description, category and geo already stored;
    only volatile fields are taken from the candidate. Candidates without a
    username are rejected individually.
    """

    existing_by_username = existing_by_username or {}
    result = Reconciliation()
    seen_ids: Set[int] = {channel_id for channel_id in skip_ids if channel_id}
    seen_usernames: Set[str] = {username for username in skip_usernames if username}

    for candidate in candidates:
        existing = existing_by_id.get(candidate.id) if candidate.id else None
        if existing is None and candidate.username:
            existing = existing_by_username.get(candidate.username)
        username = candidate.username or (existing.username if existing else None)
        if not username:
            error = ValidationError("username", f"candidate {candidate.id} has no username")
            logger.warning("Rejected similar channel %s: %s", candidate.id, error)
            result.rejected.append((candidate, error))
            continue

        channel_id = candidate.id or (existing.id if existing else 0)
        if (channel_id and channel_id in seen_ids) or username in seen_usernames:
            continue
        if channel_id:
            seen_ids.add(channel_id)
        seen_usernames.add(username)

        if existing is not None:
            record = existing.copy()
            record.id = channel_id
            record.username = username
        else:
            record = ChannelRecord(id=channel_id, username=username)
        changed = _refresh_volatile(record, candidate)

        if existing is not None and record.is_complete:
            result.done.append(record)
            if changed or (record.id, record.username) != (existing.id, existing.username):
                result.refreshed.append(record)
        else:
            result.incomplete.append(record)

    logger.info(
        "Reconciled candidates: %d done, %d incomplete, %d rejected",
        len(result.done),
        len(result.incomplete),
        len(result.rejected),
    )
    return result
