from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from common.logging_setup import setup_logging
from common.settings import Settings, load_settings
from decoding.events import EVENT_TOPICS, decode_log, event_name
from decoding.game_codes import game_code_from_text
from discovery.finder import ProgressiveInteractionFinder
from discovery.games import GameDiscovery
from ingestion.endpoints import BlockRange
from ingestion.fetcher import FetchFailed, LogFetcher
from ingestion.health import ConfigurationError


def _print_status(status) -> None:
    parts = [f"[{status.state.value}]"]
    if status.block_number is not None:
        parts.append(f"block={status.block_number}")
    if status.game_code:
        parts.append(f"code={status.game_code}")
    if status.source is not None:
        parts.append(f"source={status.source.value}")
    if status.error:
        parts.append(f"note={status.error}")
    print(" ".join(parts))


def cmd_block(settings: Settings, fetcher: LogFetcher, args) -> int:
    print(fetcher.get_block_number())
    return 0


def cmd_logs(settings: Settings, fetcher: LogFetcher, args) -> int:
    topic = EVENT_TOPICS.get(args.event) if args.event else None
    logs = fetcher.fetch_logs(
        settings.contract.address,
        BlockRange(args.from_block, args.to_block),
        involved_address=args.address,
        event_topic=topic,
    )
    for lg in logs:
        ev = decode_log(lg)
        print(f"{lg.block_number}:{lg.transaction_index}:{lg.log_index} "
              f"{event_name(lg.topic0) or lg.topic0[:10]} {ev.code if ev else '-'} {lg.transaction_hash}")
    print(f"{len(logs)} logs")
    return 0


def cmd_last_interaction(settings: Settings, fetcher: LogFetcher, args) -> int:
    finder = ProgressiveInteractionFinder(fetcher, settings.contract.address, settings.search.windows)
    block = finder.find_last_interaction(args.wallet, args.before)
    print(block if block is not None else "no interaction found")
    return 0


def cmd_games(settings: Settings, fetcher: LogFetcher, args) -> int:
    discovery = GameDiscovery.from_settings(settings, fetcher)
    limit = args.limit or settings.search.display_limit
    for code in discovery.find_games_for_wallet(args.wallet, limit):
        print(code)
    return 0


def cmd_events(settings: Settings, fetcher: LogFetcher, args) -> int:
    code = game_code_from_text(args.code)
    if code is None:
        raise ValueError(f"no game code in {args.code!r}")
    discovery = GameDiscovery.from_settings(settings, fetcher)
    for rec in discovery.find_game_events(code, BlockRange(args.from_block, args.to_block), fuzzy=True):
        print(f"{rec.log.block_number} {rec.event.name} {rec.log.transaction_hash}")
    return 0


def cmd_monitor(settings: Settings, fetcher: LogFetcher, args) -> int:
    from monitoring.poller import TransactionPoller
    from monitoring.tx_monitor import TransactionMonitor

    monitor = TransactionMonitor.from_settings(settings, fetcher)

    async def poll():
        poller = TransactionPoller.from_settings(settings, monitor, args.tx_hash, args.submitter, _print_status)
        poller.start()
        return await poller.wait()

    if args.poll:
        final = asyncio.run(poll())
    else:
        final = asyncio.run(monitor.run(args.tx_hash, args.submitter, on_status=_print_status))
    return 0 if final is not None and final.game_code else 1


def cmd_health(settings: Settings, fetcher: LogFetcher, args) -> int:
    print(json.dumps(fetcher.tracker.health_status(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Discover and track game contract events over public RPC")
    p.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("block", help="Print the current chain head").set_defaults(func=cmd_block)

    s = sub.add_parser("logs", help="Fetch deduplicated contract logs for a block range")
    s.add_argument("from_block", type=int)
    s.add_argument("to_block", type=int)
    s.add_argument("--address", default=None, help="Only logs with this address in an indexed slot")
    s.add_argument("--event", choices=sorted(EVENT_TOPICS), default=None)
    s.set_defaults(func=cmd_logs)

    s = sub.add_parser("last-interaction", help="Latest block in which a wallet touched the contract")
    s.add_argument("wallet")
    s.add_argument("--before", type=int, default=None, help="Anchor block (default: chain head)")
    s.set_defaults(func=cmd_last_interaction)

    s = sub.add_parser("games", help="Recent game codes for a wallet")
    s.add_argument("wallet")
    s.add_argument("--limit", type=int, default=None)
    s.set_defaults(func=cmd_games)

    s = sub.add_parser("events", help="Decoded events of one game in a block range")
    s.add_argument("code", help="Game code or a /game/<code> link")
    s.add_argument("from_block", type=int)
    s.add_argument("to_block", type=int)
    s.set_defaults(func=cmd_events)

    s = sub.add_parser("monitor", help="Follow a game creation transaction until its code is known")
    s.add_argument("tx_hash")
    s.add_argument("submitter")
    s.add_argument("--poll", action="store_true", help="Retry on the configured poller schedule")
    s.set_defaults(func=cmd_monitor)

    sub.add_parser("health", help="Endpoint health snapshot").set_defaults(func=cmd_health)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    try:
        settings = load_settings(args.config)
        fetcher = LogFetcher.from_settings(settings)
        return args.func(settings, fetcher, args)
    except FetchFailed as e:
        print(f"ERROR search inconclusive: {e}", file=sys.stderr)
        return 1
    except (ConfigurationError, RuntimeError) as e:
        print(f"ERROR configuration: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"ERROR {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
