#!/usr/bin/env python3
"""Reconcile dispatch eligibility facts against their authoritative sources."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from dispatch_elig.core.telemetry import configure_logging
from dispatch_elig.eligibility.engine import get_engine
from dispatch_elig.eligibility.errors import EligibilityError, UnknownPluginError
from dispatch_elig.services.repository import RepositoryError, get_repository


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Backfill dispatch eligibility facts.")
    parser.add_argument(
        "--plugin",
        action="append",
        dest="plugin_ids",
        help="Plugin id to backfill (repeatable; default: all registered plugins)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report which plugins would run",
    )
    return parser


def plan(plugins: list[dict[str, Any]], plugin_ids: list[str] | None) -> dict[str, list[str]]:
    known = {plugin["id"] for plugin in plugins}
    unknown = sorted(set(plugin_ids or ()) - known)
    if unknown:
        raise UnknownPluginError(f"unknown plugin ids: {unknown}")
    selected = [plugin for plugin in plugins if plugin_ids is None or plugin["id"] in plugin_ids]
    return {
        "run": [plugin["id"] for plugin in selected if plugin["active"]],
        "skip": [plugin["id"] for plugin in selected if not plugin["active"]],
    }


async def _run(plugin_ids: list[str] | None, dry_run: bool) -> dict[str, Any]:
    engine = get_engine()
    try:
        await engine.initialize()
        if dry_run:
            return plan(engine.describe_plugins(), plugin_ids)
        summary = await engine.backfill(plugin_ids)
        return summary.as_dict()
    finally:
        await get_repository().close()


def main() -> int:
    args = build_parser().parse_args()
    configure_logging()

    try:
        result = asyncio.run(_run(args.plugin_ids, args.dry_run))
    except (EligibilityError, RepositoryError) as exc:
        print(f"backfill failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
