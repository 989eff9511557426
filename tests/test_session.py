"""
Tests for the monitoring session lifecycle.
"""
import pytest

from conftest import COUNTERPARTY, TOKEN_A, WATCHED, make_block, settle, tx_hash
from core.errors import PreconditionError
from core.models import BlockTransaction, SessionState, TransferKind
from core.session import MonitoringSession
from core.wallet import WatchOnlyWallet

OTHER = "0x" + "99" * 20


@pytest.fixture
def wallet():
    return WatchOnlyWallet(WATCHED)


@pytest.fixture
def session(context, wallet):
    return MonitoringSession(context, wallet)


async def test_start_requires_address(context):
    session = MonitoringSession(context, WatchOnlyWallet())
    with pytest.raises(PreconditionError):
        await session.start([137])
    assert session.state == SessionState.IDLE


async def test_start_requires_chains(session):
    with pytest.raises(PreconditionError):
        await session.start([])
    assert session.monitors == {}


async def test_unconfigured_chain_reported_others_start(session):
    report = await session.start([137, 999])

    assert report.started == [137]
    assert list(report.failed) == [999]
    assert session.state == SessionState.ACTIVE
    assert session.active_chains == [137]
    await session.stop()


async def test_all_chains_failing_stays_idle(session):
    report = await session.start([999])
    assert report.started == []
    assert session.state == SessionState.IDLE


async def test_restart_same_chain_is_noop(session):
    await session.start([137])
    monitor = session.monitors[137]

    report = await session.start([137, 137])
    assert report.already_active == [137]
    assert session.monitors[137] is monitor
    await session.stop()


async def test_parameters_reach_components(session):
    await session.start([137], token_allowlist=[TOKEN_A], counterparty_address=COUNTERPARTY)
    monitor = session.monitors[137]

    assert monitor.subscriptions.token_allowlist == [TOKEN_A]
    assert monitor.subscriptions.chain_name == "Polygon"
    assert monitor.poller.counterparty_address == COUNTERPARTY
    assert monitor.poller.interval == 7.0
    await session.stop()


async def test_counterparty_payment_delivered_once(session, fake_client, sink):
    fake_client.blocks[100] = make_block(
        100, BlockTransaction(hash=tx_hash(1), from_address=COUNTERPARTY, to_address=WATCHED, value=10 ** 18)
    )
    await session.start([137], counterparty_address=COUNTERPARTY)
    await settle()

    assert sink.kinds == [TransferKind.COUNTERPARTY]
    await session.stop()


async def test_stop_silences_everything(session, fake_client, sink):
    fake_client.blocks[100] = make_block(
        100, BlockTransaction(hash=tx_hash(1), from_address=OTHER, to_address=WATCHED, value=1)
    )
    await session.start([137], token_allowlist=[TOKEN_A])
    await settle()
    assert len(sink.notifications) == 1
    assert len(fake_client.listeners) == 1

    await session.stop()
    assert session.state == SessionState.IDLE
    assert session.monitors == {}
    assert fake_client.listeners == []

    fake_client.latest = 101
    fake_client.blocks[101] = make_block(
        101, BlockTransaction(hash=tx_hash(2), from_address=OTHER, to_address=WATCHED, value=1)
    )
    await settle()
    assert len(sink.notifications) == 1


async def test_stop_when_idle_is_safe(session):
    await session.stop()
    await session.stop()
    assert session.state == SessionState.IDLE


async def test_address_change_restarts_session(session, wallet):
    await session.start([137])
    wallet.set_address(OTHER)

    await session.start([1])
    assert session.active_chains == [1]
    assert session.watched_address == OTHER
    assert session.monitors[1].poller.watched_address == OTHER
    await session.stop()
