import pytest

from conftest import CONTRACT, WALLET
from discovery.finder import ProgressiveInteractionFinder
from ingestion.endpoints import Endpoint


@pytest.fixture
def wide_endpoint():
    return [Endpoint("Wide", "https://wide.example", 200_000, requests_per_window=10_000)]


def test_returns_latest_block_in_first_hit(fake_rpc, make_fetcher, wide_endpoint):
    fake_rpc.add_game_started("ABC-123", WALLET, 995_000)
    fake_rpc.add_player_joined("ABC-123", WALLET, 999_000)
    finder = ProgressiveInteractionFinder(make_fetcher(wide_endpoint), CONTRACT)
    assert finder.find_last_interaction(WALLET) == 999_000
    # first window was enough: three position queries, one chunk
    assert len(fake_rpc.calls_for("eth_getLogs")) == 3


def test_widens_until_found(fake_rpc, make_fetcher, wide_endpoint):
    fake_rpc.add_game_started("OLD-1", WALLET, 960_000)
    finder = ProgressiveInteractionFinder(make_fetcher(wide_endpoint), CONTRACT)
    assert finder.find_last_interaction(WALLET, 1_000_000) == 960_000
    assert len(fake_rpc.calls_for("eth_getLogs")) == 6


def test_no_interaction_exhausts_windows(fake_rpc, make_fetcher, wide_endpoint):
    finder = ProgressiveInteractionFinder(make_fetcher(wide_endpoint), CONTRACT)
    assert finder.find_last_interaction(WALLET, 1_000_000) is None
    calls = fake_rpc.calls_for("eth_getLogs")
    assert len(calls) == 9
    assert calls[-1][2][0]["fromBlock"] == hex(900_000)


def test_anchor_at_genesis_issues_no_queries(fake_rpc, make_fetcher):
    finder = ProgressiveInteractionFinder(make_fetcher(), CONTRACT)
    assert finder.find_last_interaction(WALLET, 0) is None
    assert fake_rpc.calls == []


def test_windows_clamp_at_genesis(fake_rpc, make_fetcher, wide_endpoint):
    finder = ProgressiveInteractionFinder(make_fetcher(wide_endpoint), CONTRACT)
    assert finder.find_last_interaction(WALLET, 5_000) is None
    calls = fake_rpc.calls_for("eth_getLogs")
    assert len(calls) == 3
    assert calls[0][2][0]["fromBlock"] == hex(0)


def test_other_wallets_do_not_count(fake_rpc, make_fetcher, wide_endpoint):
    fake_rpc.add_game_started("ABC-123", "0x" + "99" * 20, 999_999)
    finder = ProgressiveInteractionFinder(make_fetcher(wide_endpoint), CONTRACT, windows=[10])
    assert finder.find_last_interaction(WALLET, 1_000_000) is None


def test_failed_window_moves_on(fake_rpc, make_fetcher, wide_endpoint):
    fake_rpc.add_game_started("ABC-123", WALLET, 999_000)
    fake_rpc.fail_after["https://wide.example"] = 0
    finder = ProgressiveInteractionFinder(make_fetcher(wide_endpoint), CONTRACT, windows=[10_000])
    assert finder.find_last_interaction(WALLET, 1_000_000) is None


def test_windows_must_be_positive():
    with pytest.raises(ValueError):
        ProgressiveInteractionFinder(None, CONTRACT, windows=[])
