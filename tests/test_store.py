import asyncio
from pathlib import Path
import sys
from typing import List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from tgdirectory.errors import StoreError
from tgdirectory.models import ChannelRecord
from tgdirectory.store import ChannelStore


@pytest.fixture
def store(tmp_path):
    return ChannelStore.from_url(f"sqlite:///{tmp_path / 'channels.db'}")


def _run(coro):
    return asyncio.run(coro)


def test_upsert_inserts_and_reads_back(store):
    record = ChannelRecord(id=10, username="alpha", title="Alpha", category="news")
    stored = _run(store.upsert(record))
    assert stored == record
    assert _run(store.get_by_id(10)) == record
    assert _run(store.get_by_username("alpha")) == record


def test_upsert_updates_existing_row_by_id(store):
    _run(store.upsert(ChannelRecord(id=10, username="alpha", title="Alpha")))
    _run(store.upsert(ChannelRecord(id=10, username="alpha-renamed", title="Alpha 2")))
    assert _run(store.get_by_username("alpha")) is None
    record = _run(store.get_by_id(10))
    assert record.username == "alpha-renamed"
    assert record.title == "Alpha 2"


def test_upsert_without_id_falls_back_to_username(store):
    _run(store.upsert(ChannelRecord(id=0, username="beta", description="About beta")))
    placeholder = _run(store.get_by_username("beta"))
    assert placeholder.id == 0

    _run(store.upsert(ChannelRecord(id=0, username="beta", category="tech")))
    assert _run(store.get_by_username("beta")).category == "tech"


def test_resolved_id_merges_placeholder_row(store):
    _run(store.upsert(ChannelRecord(id=0, username="beta", description="About beta")))
    _run(store.upsert(ChannelRecord(id=20, username="other")))

    merged = _run(store.upsert(ChannelRecord(id=20, username="beta", title="Beta")))

    assert merged.id == 20
    assert merged.description == "About beta"
    assert _run(store.get_by_username("other")) is None
    assert len(_run(store.filter())) == 1


def test_username_owned_by_other_channel_raises(store):
    _run(store.upsert(ChannelRecord(id=1, username="one")))
    _run(store.upsert(ChannelRecord(id=2, username="two")))
    with pytest.raises(StoreError):
        _run(store.upsert(ChannelRecord(id=2, username="one")))


def test_upsert_requires_username(store):
    with pytest.raises(StoreError):
        _run(store.upsert(ChannelRecord(id=3, username="")))


def test_filter_by_category_and_geo(store):
    _run(store.upsert(ChannelRecord(id=1, username="one", category="news", geo="us")))
    _run(store.upsert(ChannelRecord(id=2, username="two", category="news", geo="de")))
    _run(store.upsert(ChannelRecord(id=3, username="three", category="tech", geo="us")))

    assert {r.username for r in _run(store.filter(category="news"))} == {"one", "two"}
    assert {r.username for r in _run(store.filter(geo="US"))} == {"one", "three"}
    assert [r.username for r in _run(store.filter(category="news", geo="us"))] == ["one"]
    assert len(_run(store.filter())) == 3


def test_get_many_returns_known_ids(store):
    _run(store.upsert(ChannelRecord(id=1, username="one")))
    _run(store.upsert(ChannelRecord(id=2, username="two")))
    found = _run(store.get_many([1, 2, 3, 0]))
    assert set(found) == {1, 2}


def test_concurrent_upserts_are_serialized(store):
    async def scenario():
        records = [ChannelRecord(id=i, username=f"chan{i}") for i in range(1, 21)]
        await asyncio.gather(*(store.upsert(record) for record in records))
        return await store.filter()

    assert len(_run(scenario())) == 20


def test_reads_yield_to_the_event_loop(store):
    _run(store.upsert(ChannelRecord(id=1, username="one")))

    async def scenario():
        ticks: List[int] = []

        async def ticker():
            while True:
                ticks.append(1)
                await asyncio.sleep(0)

        task = asyncio.create_task(ticker())
        await asyncio.sleep(0)
        before = len(ticks)
        record = await store.get_by_id(1)
        after = len(ticks)
        task.cancel()
        return record, before, after

    record, before, after = _run(scenario())
    assert record.username == "one"
    assert after > before
