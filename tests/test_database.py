"""
Tests for the activity store.
"""
import pytest

from conftest import SENDER, TOKEN_A, WATCHED, tx_hash
from core.chains import DEFAULT_CHAINS
from core.database import ActivityStore
from core.models import TransferEvent, TransferKind, TransferNotification


@pytest.fixture
async def store():
    store = ActivityStore(":memory:")
    await store.connect()
    yield store
    await store.close()


def notification(n, kind=TransferKind.TOKEN, chain_id=137):
    event = TransferEvent(
        chain_id=chain_id,
        kind=kind,
        from_address=SENDER,
        to_address=WATCHED,
        token_address=TOKEN_A if kind == TransferKind.TOKEN else None,
        amount="2.5",
        tx_hash=tx_hash(n),
        block_number=1000 + n,
    )
    return TransferNotification.for_chain(event, DEFAULT_CHAINS[chain_id])


async def test_record_ignores_duplicates(store):
    assert await store.record(notification(1)) is True
    assert await store.record(notification(1)) is False
    assert await store.record(notification(1, kind=TransferKind.NATIVE)) is True
    assert await store.count() == 2


async def test_recent_newest_first(store):
    for n in range(3):
        await store.deliver(notification(n))
    await store.deliver(notification(9, chain_id=1))

    recent = await store.recent(limit=2)
    assert [r.event.tx_hash for r in recent] == [tx_hash(9), tx_hash(2)]

    polygon = await store.recent(chain_id=137)
    assert len(polygon) == 3


async def test_round_trip_keeps_metadata(store):
    await store.record(notification(4))
    stored = (await store.recent())[0]

    assert stored.chain_name == "Polygon"
    assert stored.event.token_address == TOKEN_A
    assert stored.event.amount == "2.5"
    assert stored.explorer_url == f"https://polygonscan.com/tx/{tx_hash(4)}"
    assert stored.to_message() == notification(4).to_message()
