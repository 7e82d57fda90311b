# decoding/events.py
"""
Event layouts of the game contract and decoding of its logs.

Topic hashes and data layouts are both derived from the event declarations
below, so they cannot drift apart. A signature the table does not know
decodes to None; that is not an error.
"""
from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Type

from eth_utils import keccak

from decoding.abi import (
    WORD,
    HexOrBytes,
    decode_address,
    decode_address_array_at,
    decode_bool,
    decode_string_at,
    decode_uint,
    decode_uint_array_at,
    to_bytes,
    word_at,
)
from decoding.game_codes import normalize_game_code
from ingestion.parser import LogEntry


@dataclass(frozen=True)
class GameEvent:
    code: str

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class GameStarted(GameEvent):
    token: str
    buy_in: int
    max_players: int
    judges: Tuple[str, ...]
    host: Optional[str] = None


@dataclass(frozen=True)
class JudgeSet(GameEvent):
    judge: Optional[str] = None


@dataclass(frozen=True)
class PlayerJoined(GameEvent):
    token: str
    amount: int
    player: Optional[str] = None


@dataclass(frozen=True)
class PlayerRemoved(GameEvent):
    participant: Optional[str] = None


@dataclass(frozen=True)
class GameLocked(GameEvent):
    pass


@dataclass(frozen=True)
class PrizeSplitsSet(GameEvent):
    splits: Tuple[int, ...]


@dataclass(frozen=True)
class PotAdded(GameEvent):
    token: str
    amount: int
    sender: Optional[str] = None


@dataclass(frozen=True)
class WinnersReported(GameEvent):
    winners: Tuple[str, ...]
    reporter: Optional[str] = None


@dataclass(frozen=True)
class WinnerSetConfirmed(GameEvent):
    winners: Tuple[str, ...]


@dataclass(frozen=True)
class WinningsClaimed(GameEvent):
    token: str
    amount: int
    winner: Optional[str] = None


EVENT_DECLARATIONS: List[Tuple[str, Type[GameEvent]]] = [
    ("GameStarted(string code, address indexed host, address token, uint256 buyIn, uint256 maxPlayers, address[] judges)", GameStarted),
    ("JudgeSet(string code, address indexed judge)", JudgeSet),
    ("PlayerJoined(string code, address indexed player, address token, uint256 amount)", PlayerJoined),
    ("PlayerRemoved(string code, address indexed participant)", PlayerRemoved),
    ("GameLocked(string code)", GameLocked),
    ("PrizeSplitsSet(string code, uint256[] splits)", PrizeSplitsSet),
    ("PotAdded(string code, address indexed sender, address token, uint256 amount)", PotAdded),
    ("WinnersReported(string code, address indexed reporter, address[] winners)", WinnersReported),
    ("WinnerSetConfirmed(string code, address[] winners)", WinnerSetConfirmed),
    ("WinningsClaimed(string code, address indexed winner, address token, uint256 amount)", WinningsClaimed),
]

_DECL_RE = re.compile(r"^(\w+)\((.*)\)$")


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass(frozen=True)
class EventLayout:
    name: str
    signature: str
    topic: str
    cls: Type[GameEvent]
    # non-indexed parameters in head order, as (abi type, field name)
    data_fields: Tuple[Tuple[str, str], ...]
    # indexed parameters in topic order (topics[1:])
    indexed_fields: Tuple[Tuple[str, str], ...]

    @property
    def head_size(self) -> int:
        return len(self.data_fields) * WORD


def parse_declaration(declaration: str, cls: Type[GameEvent]) -> EventLayout:
    m = _DECL_RE.match(declaration.strip())
    if not m:
        raise ValueError(f"bad event declaration: {declaration!r}")
    name, arglist = m.group(1), m.group(2)
    types, data_fields, indexed_fields = [], [], []
    for arg in [a.strip() for a in arglist.split(",") if a.strip()]:
        parts = arg.split()
        abi_type, field_name = parts[0], _snake(parts[-1])
        types.append(abi_type)
        if "indexed" in parts[1:-1]:
            indexed_fields.append((abi_type, field_name))
        else:
            data_fields.append((abi_type, field_name))
    signature = f"{name}({','.join(types)})"
    return EventLayout(
        name=name,
        signature=signature,
        topic="0x" + keccak(text=signature).hex(),
        cls=cls,
        data_fields=tuple(data_fields),
        indexed_fields=tuple(indexed_fields),
    )


LAYOUTS: Dict[str, EventLayout] = {}
for _decl, _cls in EVENT_DECLARATIONS:
    _layout = parse_declaration(_decl, _cls)
    LAYOUTS[_layout.topic] = _layout

EVENT_TOPICS: Dict[str, str] = {lay.name: lay.topic for lay in LAYOUTS.values()}
GAME_STARTED_TOPIC = EVENT_TOPICS["GameStarted"]


def event_name(topic: Optional[str]) -> Optional[str]:
    if not topic:
        return None
    lay = LAYOUTS.get(topic.lower())
    return lay.name if lay else None


# head slot decoders: (buffer, head word) -> value or None
_SLOT_DECODERS: Dict[str, Callable[[bytes, bytes], object]] = {
    "address": lambda buf, w: decode_address(w),
    "uint256": lambda buf, w: decode_uint(w),
    "bool": lambda buf, w: decode_bool(w),
    "string": lambda buf, w: decode_string_at(buf, int.from_bytes(w, "big")),
    "address[]": lambda buf, w: decode_address_array_at(buf, int.from_bytes(w, "big")),
    "uint256[]": lambda buf, w: decode_uint_array_at(buf, int.from_bytes(w, "big")),
}


def decode_event(signature_topic: Optional[str], data: HexOrBytes) -> Optional[GameEvent]:
    """
    Decode event data by the layout registered for `signature_topic`.
    Indexed fields are left as None; see decode_log.
    """
    if not signature_topic:
        return None
    layout = LAYOUTS.get(signature_topic.lower())
    if layout is None:
        return None
    buf = to_bytes(data)
    if buf is None or len(buf) < layout.head_size:
        return None

    values = {}
    for i, (abi_type, field_name) in enumerate(layout.data_fields):
        head = word_at(buf, i * WORD)
        decoder = _SLOT_DECODERS.get(abi_type)
        if head is None or decoder is None:
            return None
        value = decoder(buf, head)
        if value is None:
            return None
        values[field_name] = value

    code = normalize_game_code(values.get("code"))
    if code is None:
        return None
    values["code"] = code
    return layout.cls(**values)


def decode_log(log: LogEntry) -> Optional[GameEvent]:
    """decode_event plus the indexed address fields taken from topics[1:]."""
    event = decode_event(log.topic0, log.data)
    if event is None:
        return None
    layout = LAYOUTS[log.topic0.lower()]
    indexed = {}
    for (abi_type, field_name), topic in zip(layout.indexed_fields, log.topics[1:]):
        if abi_type == "address":
            indexed[field_name] = decode_address(topic)
    return dataclasses.replace(event, **indexed) if indexed else event


__all__ = [
    "GameEvent",
    "GameStarted",
    "JudgeSet",
    "PlayerJoined",
    "PlayerRemoved",
    "GameLocked",
    "PrizeSplitsSet",
    "PotAdded",
    "WinnersReported",
    "WinnerSetConfirmed",
    "WinningsClaimed",
    "EventLayout",
    "LAYOUTS",
    "EVENT_TOPICS",
    "GAME_STARTED_TOPIC",
    "event_name",
    "parse_declaration",
    "decode_event",
    "decode_log",
]
