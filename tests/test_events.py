from eth_abi import encode
from eth_utils import keccak

from conftest import OTHER, TOKEN, WALLET, addr_topic, game_started_data, player_joined_data
from decoding.events import (
    EVENT_TOPICS,
    GAME_STARTED_TOPIC,
    GameLocked,
    GameStarted,
    PlayerJoined,
    PrizeSplitsSet,
    WinnersReported,
    decode_event,
    decode_log,
    event_name,
    parse_declaration,
)
from ingestion.parser import LogEntry


def make_log(topics, data):
    return LogEntry(
        address="0x" + "00" * 20,
        topics=tuple(topics),
        data=data,
        block_number=1,
        transaction_hash="0x" + "00" * 32,
        transaction_index=0,
        log_index=0,
    )


def test_topics_are_keccak_of_canonical_signatures():
    expected = "0x" + keccak(text="GameStarted(string,address,address,uint256,uint256,address[])").hex()
    assert GAME_STARTED_TOPIC == expected
    assert EVENT_TOPICS["GameLocked"] == "0x" + keccak(text="GameLocked(string)").hex()
    assert event_name(GAME_STARTED_TOPIC.upper().replace("0X", "0x")) == "GameStarted"
    assert event_name("0x" + "00" * 32) is None


def test_declaration_layout_splits_indexed_parameters():
    lay = parse_declaration("PotAdded(string code, address indexed sender, address token, uint256 amount)", PlayerJoined)
    assert lay.signature == "PotAdded(string,address,address,uint256)"
    assert lay.data_fields == (("string", "code"), ("address", "token"), ("uint256", "amount"))
    assert lay.indexed_fields == (("address", "sender"),)


def test_decode_game_started():
    data = game_started_data("abc-123", buy_in=25, max_players=4, judges=[OTHER])
    ev = decode_event(GAME_STARTED_TOPIC, data)
    assert isinstance(ev, GameStarted)
    assert ev.code == "ABC-123"
    assert ev.token == TOKEN
    assert ev.buy_in == 25
    assert ev.max_players == 4
    assert ev.judges == (OTHER,)
    assert ev.host is None


def test_decode_log_fills_indexed_address():
    log = make_log([GAME_STARTED_TOPIC, addr_topic(WALLET)], game_started_data("ROOM1"))
    ev = decode_log(log)
    assert ev.host == WALLET
    assert ev.name == "GameStarted"


def test_decode_player_joined_and_winners():
    ev = decode_event(EVENT_TOPICS["PlayerJoined"], player_joined_data("JOIN-9", amount=77))
    assert isinstance(ev, PlayerJoined)
    assert (ev.code, ev.amount) == ("JOIN-9", 77)

    data = "0x" + encode(["string", "address[]"], ["WIN-1", [WALLET, OTHER]]).hex()
    ev = decode_event(EVENT_TOPICS["WinnersReported"], data)
    assert isinstance(ev, WinnersReported)
    assert ev.winners == (WALLET, OTHER)


def test_decode_string_only_and_uint_array_events():
    ev = decode_event(EVENT_TOPICS["GameLocked"], "0x" + encode(["string"], ["LOCK-1"]).hex())
    assert ev == GameLocked(code="LOCK-1")
    data = "0x" + encode(["string", "uint256[]"], ["SPLIT", [60, 30, 10]]).hex()
    ev = decode_event(EVENT_TOPICS["PrizeSplitsSet"], data)
    assert isinstance(ev, PrizeSplitsSet)
    assert ev.splits == (60, 30, 10)


def test_unknown_signature_is_no_decode():
    assert decode_event("0x" + "12" * 32, game_started_data("ABC-123")) is None
    assert decode_event(None, "0x") is None


def test_short_head_is_no_decode():
    data = game_started_data("ABC-123")
    # keep only the first two head slots
    assert decode_event(GAME_STARTED_TOPIC, data[:2 + 128]) is None


def test_invalid_game_code_is_no_decode():
    assert decode_event(GAME_STARTED_TOPIC, game_started_data("AB")) is None
    assert decode_event(GAME_STARTED_TOPIC, game_started_data("HAS SPACE")) is None
    assert decode_event(GAME_STARTED_TOPIC, game_started_data("ELEVENCHARS")) is None
