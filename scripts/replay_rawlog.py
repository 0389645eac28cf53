#!/usr/bin/env python3
"""Replay a rotated raw log against a running relay.

Reads every part file of a log base path in part order and re-POSTs each
stored payload to the relay, e.g. to rebuild a dashboard after a restart or
to exercise a dev instance with recorded traffic.

Usage
-----
    python scripts/replay_rawlog.py raw/2026-10-19/dota2_gsi_2026-10-19T08-15-02Z.jsonl
    python scripts/replay_rawlog.py --url http://localhost:3005/ --delay 0.1 BASE_PATH
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import aiohttp

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from gsirelay.rawlog import iter_part_files, read_envelopes  # noqa: E402

_LOG = logging.getLogger("replay_rawlog")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Re-POST payloads from a gsirelay raw log.")
    parser.add_argument("base_path", type=Path, help="Log base path (without the _partNNNN suffix).")
    parser.add_argument(
        "--url",
        default="http://localhost:3005/",
        help="Relay ingestion URL.",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=0.0,
        help="Seconds to sleep between posts.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


async def _replay(base_path: Path, url: str, delay: float) -> dict[str, int]:
    counts: dict[str, int] = {}
    async with aiohttp.ClientSession() as session:
        for envelope in read_envelopes(base_path):
            async with session.post(url, json=envelope.payload) as resp:
                body = (await resp.text()).strip()
            key = body if resp.status == 200 else f"http_{resp.status}"
            counts[key] = counts.get(key, 0) + 1
            _LOG.debug("ts=%s -> %s %s", envelope.ts_server_ms, resp.status, body)
            if delay > 0:
                await asyncio.sleep(delay)
    return counts


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    parts = iter_part_files(args.base_path)
    if not parts:
        print(f"[replay] no part files found for {args.base_path}", file=sys.stderr)
        return 1
    print(f"[replay] {len(parts)} part file(s)")

    try:
        counts = asyncio.run(_replay(args.base_path, args.url, args.delay))
    except aiohttp.ClientError as exc:  # pragma: no cover - network/system interaction
        print(f"[replay] request failed: {exc}", file=sys.stderr)
        return 2

    for outcome, count in sorted(counts.items()):
        print(f"[replay]   {outcome:<10}: {count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
