#!/usr/bin/env python3
"""Beacon Escalation Ticker: drives escalation timeouts and rotations.

Calls the Beacon API on a fixed interval:

    POST /api/v1/escalations/tick   advance timed-out escalation runs
    POST /api/v1/oncall/rotate      re-anchor schedules whose interval elapsed

Ticks are idempotent, so running more than one ticker (or overlapping
with a manual tick) never notifies a level twice.

Usage:
    export BEACON_URL=http://localhost:8000
    export TICK_INTERVAL=60

    python tick.py

    # Or with CLI overrides:
    python tick.py --beacon-url http://beacon:8000 --interval 30 --no-rotate
"""

import argparse
import logging
import os
import signal
import time

import requests

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("beacon-escalation-tick")

# Graceful shutdown flag
_shutdown = False


def _handle_signal(signum: int, frame: object) -> None:
    global _shutdown
    logger.info(f"Received signal {signum}, shutting down...")
    _shutdown = True


signal.signal(signal.SIGINT, _handle_signal)
signal.signal(signal.SIGTERM, _handle_signal)


# ── Configuration ────────────────────────────────────────


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def build_config(args: argparse.Namespace) -> dict:
    """Build configuration from env vars with CLI overrides."""
    rotate = not args.no_rotate and _env("ROTATE_SCHEDULES", "true").lower() == "true"
    return {
        "beacon_url": args.beacon_url or _env("BEACON_URL", "http://localhost:8000"),
        "api_prefix": _env("API_PREFIX", "/api/v1"),
        "interval": args.interval or int(_env("TICK_INTERVAL", "60")),
        "timeout": int(_env("TICK_TIMEOUT", "120")),
        "rotate": rotate,
    }


# ── Beacon API ───────────────────────────────────────────


def _post(path: str, config: dict) -> dict | None:
    url = f"{config['beacon_url'].rstrip('/')}{config['api_prefix']}{path}"
    try:
        resp = requests.post(url, timeout=config["timeout"])
        if resp.status_code == 200:
            return resp.json()
        logger.warning(f"Beacon returned {resp.status_code} for {path}: {resp.text[:200]}")
        return None
    except requests.RequestException as e:
        logger.error(f"Failed to call Beacon {path}: {e}")
        return None


def run_tick(config: dict) -> dict | None:
    """Evaluate escalation timeouts. Returns the tick counts or None."""
    result = _post("/escalations/tick", config)
    if result and (result.get("advanced") or result.get("wrapped") or result.get("exhausted")):
        logger.info(
            f"Tick: advanced={result.get('advanced', 0)}, wrapped={result.get('wrapped', 0)}, "
            f"exhausted={result.get('exhausted', 0)}, skipped={result.get('skipped', 0)}"
        )
    return result


def run_rotation(config: dict) -> dict | None:
    """Re-anchor due schedules. Returns the rotation counts or None."""
    result = _post("/oncall/rotate", config)
    if result and result.get("rotated"):
        logger.info(f"Rotated {result['rotated']} of {result.get('total', 0)} schedule(s)")
    return result


def run_once(config: dict) -> dict:
    """One full cycle: escalation tick, then (optionally) rotation."""
    summary = {"tick": run_tick(config), "rotation": None}
    if config["rotate"]:
        summary["rotation"] = run_rotation(config)
    return summary


# ── Main loop ────────────────────────────────────────────


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Beacon Escalation Ticker: advance escalations and rotations",
    )
    parser.add_argument("--beacon-url", help="Beacon API base URL")
    parser.add_argument("--interval", type=int, help="Seconds between ticks (default: 60)")
    parser.add_argument("--no-rotate", action="store_true", help="Skip scheduled rotation")
    parser.add_argument("--once", action="store_true", help="Run once and exit (no loop)")

    args = parser.parse_args()
    config = build_config(args)

    logger.info("Beacon Escalation Ticker starting")
    logger.info(f"  Beacon URL: {config['beacon_url']}")
    logger.info(f"  Interval: {config['interval']}s")
    logger.info(f"  Rotation: {'on' if config['rotate'] else 'off'}")

    if args.once:
        run_once(config)
        logger.info("Single tick complete")
        return

    while not _shutdown:
        run_once(config)

        # Sleep in small increments for responsive shutdown
        for _ in range(config["interval"]):
            if _shutdown:
                break
            time.sleep(1)

    logger.info("Ticker stopped")


if __name__ == "__main__":
    main()
