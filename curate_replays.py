#!/usr/bin/env python3
"""
Download and curate a player's recent ladder replays into the bwtools library.

Usage:
  python curate_replays.py Foo --port 57421                 # all 1v1 replays
  python curate_replays.py Foo --matchup PvT --count 10 --port 57421
  python curate_replays.py Foo --alias FooMain --base-url http://127.0.0.1:57421
"""

import argparse
import logging
import sys
import threading
from pathlib import Path

from bw_api import gateway_label
from config import (DEFAULT_GATEWAY, DEFAULT_MAX_CONCURRENCY, CurationConfig,
                    default_api_base_url)
from errors import StoreError, ToolMissing
from models import ReplayRequest
from pipeline import CurationPipeline
from resolver import PROFILE_REPLAY_CAP


def build_parser():
    parser = argparse.ArgumentParser(
        prog="curate-replays",
        description="Download, analyze and file a player's ladder replays",
    )
    parser.add_argument("player", help="Toon name whose profile replays are fetched")
    parser.add_argument("--gateway", type=int, default=DEFAULT_GATEWAY,
                        help=f"Gateway ID (default {DEFAULT_GATEWAY}={gateway_label(DEFAULT_GATEWAY)})")
    parser.add_argument("--matchup", help="Race pair, e.g. PvT, zvz, protoss,terran (default: all)")
    parser.add_argument("--count", type=int, default=PROFILE_REPLAY_CAP,
                        help=f"Max replays to consider (profile holds at most {PROFILE_REPLAY_CAP})")
    parser.add_argument("--alias", help="Library folder name to file replays under (default: player)")
    parser.add_argument("--port", type=int, help="Local web API port of the running game client")
    parser.add_argument("--base-url", help="Full web API base URL (overrides --port)")
    parser.add_argument("--replay-root", type=Path, help="Replay directory (default: OS-specific)")
    parser.add_argument("--screp", help="Path to the screp executable")
    parser.add_argument("--workers", type=int, default=DEFAULT_MAX_CONCURRENCY,
                        help=f"Concurrent downloads/analyses (default {DEFAULT_MAX_CONCURRENCY})")
    parser.add_argument("--no-verify", action="store_true", help="Skip md5 verification of downloads")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    base_url = args.base_url
    if not base_url and args.port:
        base_url = f"http://127.0.0.1:{args.port}"
    base_url = base_url or default_api_base_url()
    if not base_url:
        print("No web API address: pass --port/--base-url or set BWTOOLS_API_PORT.")
        return 2

    config = CurationConfig.from_defaults(
        replay_root=args.replay_root,
        screp_cmd=args.screp,
        api_base_url=base_url,
        max_concurrency=args.workers,
        verify_hash=not args.no_verify,
    )
    request = ReplayRequest(player=args.player, gateway=args.gateway,
                            matchup=args.matchup, max_count=args.count, alias=args.alias)

    print(f"Curating replays for {args.player} ({gateway_label(args.gateway)}, "
          f"matchup={args.matchup or 'All'}, count={args.count})...")
    print(f"Library: {config.bwtools_root}")

    pipeline = CurationPipeline.from_config(config)
    try:
        result = pipeline.run(request, cancel=threading.Event())
    except ToolMissing as e:
        print(f"Analysis tool unavailable: {e}")
        return 1
    except StoreError as e:
        print(f"Manifest unavailable: {e}")
        return 1
    except ValueError as e:
        print(str(e))
        return 2

    for replay in result.finalized:
        print(f"  Saved: {replay.destination_path}")
    for err in result.errors[:10]:
        print(f"  Error: {err}")
    if len(result.errors) > 10:
        print(f"  ... and {len(result.errors) - 10} more errors")

    s = result.summary
    print(f"\nDone: {s.downloaded} downloaded, {s.skipped} skipped, "
          f"{s.rejected} rejected, {s.failed} failed"
          + (f", {s.cancelled} cancelled" if s.cancelled else ""))
    return 0 if s.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
