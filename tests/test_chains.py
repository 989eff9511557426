"""
Tests for the chain registry and the text configuration format.
"""
import pytest

from core.chains import DEFAULT_CHAINS, ChainRegistry, parse_chain_entries, parse_chain_id
from core.models import ChainConfig


def test_defaults_seeded():
    registry = ChainRegistry(DEFAULT_CHAINS)
    assert sorted(c.id for c in registry.all()) == [1, 5, 56, 137]
    assert registry.get(137).display_name == "Polygon"
    assert 56 in registry
    assert len(registry) == 4


def test_configure_only_once():
    registry = ChainRegistry({1: DEFAULT_CHAINS[1]})
    registry.configure(DEFAULT_CHAINS)
    assert [c.id for c in registry.all()] == [1]


def test_override_rpc_keeps_display_fields():
    registry = ChainRegistry(DEFAULT_CHAINS)
    applied = registry.apply_overrides([{"id": 137, "rpc": "https://x"}])

    chain = registry.get(137)
    assert applied == [137]
    assert chain.rpc_endpoint == "https://x"
    assert chain.display_name == "Polygon"
    assert chain.explorer_url_template == "https://polygonscan.com/tx/"
    assert chain.native_symbol == "MATIC"


def test_unknown_chain_gets_fallback_metadata():
    registry = ChainRegistry(DEFAULT_CHAINS)
    registry.apply_overrides([{"id": 10, "rpc": "https://mainnet.optimism.io"}])

    chain = registry.get(10)
    assert chain.display_name == "Chain 10"
    assert chain.explorer_url_template == ""
    assert chain.can_monitor


def test_removed_default_restored_from_builtin_metadata():
    registry = ChainRegistry({1: DEFAULT_CHAINS[1]})
    registry.apply_overrides([{"id": 56}])
    assert registry.get(56).display_name == "BSC Mainnet"


def test_malformed_entries_skipped_valid_applied():
    registry = ChainRegistry(DEFAULT_CHAINS)
    applied = registry.apply_overrides([
        {"id": "abc", "rpc": "https://bad"},
        "garbage",
        {"id": -3},
        {"rpc": "https://missing-id"},
        {"id": 10, "rpc": "https://op"},
    ])

    assert applied == [10]
    assert registry.get(10).rpc_endpoint == "https://op"
    assert len(registry) == 5


def test_listeners_notified_on_apply():
    registry = ChainRegistry(DEFAULT_CHAINS)
    calls = []
    registry.add_listener(lambda: calls.append(True))

    registry.apply_overrides([{"id": 1, "name": "Ethereum"}])
    assert calls == [True]
    assert registry.get(1).display_name == "Ethereum"


def test_all_is_a_snapshot():
    registry = ChainRegistry(DEFAULT_CHAINS)
    snapshot = registry.all()
    registry.apply_overrides([{"id": 10}])
    assert len(snapshot) == 4


@pytest.mark.parametrize("value,expected", [
    (137, 137),
    ("137", 137),
    (" 10 ", 10),
    (0, 0),
    (-1, None),
    (True, None),
    ("abc", None),
    (None, None),
])
def test_parse_chain_id(value, expected):
    assert parse_chain_id(value) == expected


def test_parse_chain_entries():
    entries = parse_chain_entries("137:https://x, 10\nabc:http://y\n\n56:https://bsc:8545/")
    assert entries == [
        {"id": 137, "rpc": "https://x"},
        {"id": 10},
        {"id": 56, "rpc": "https://bsc:8545/"},
    ]


def test_parse_chain_entries_empty():
    assert parse_chain_entries("") == []
    assert parse_chain_entries(None) == []


def test_chain_config_is_immutable():
    chain = ChainConfig.fallback(7)
    with pytest.raises(Exception):
        chain.display_name = "Other"
