#!/usr/bin/env python3
"""Reconstruct one session log and print a view of it.

Usage:
  python -m sessionlens.scripts.inspect_session ~/.claude/projects/-repo/abc.jsonl
  python -m sessionlens.scripts.inspect_session abc.jsonl --view context --json
  python -m sessionlens.scripts.inspect_session abc.jsonl --view waterfall --pricing pricing.yaml
"""
from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from sessionlens import config
from sessionlens.engine.pipeline import SessionPipeline, to_session_detail
from sessionlens.engine.timeline import build_groups, build_waterfall
from sessionlens.models import SessionContext, SessionNotFound
from sessionlens.pricing import load_pricing_table
from sessionlens.providers.filesystem import LocalFileSystemProvider

VIEWS = ("detail", "groups", "metrics", "waterfall", "context")


def _print_summary(view: str, payload: dict) -> None:
    if view == "metrics":
        cost = payload.get("costUsd")
        print(f"Messages: {payload['messageCount']}  Turns: {payload['turnCount']}  Tools: {payload['toolCallCount']}")
        print(f"Tokens: {payload['totalTokens']} (in={payload['inputTokens']} out={payload['outputTokens']})")
        print(f"Compactions: {payload['compactionCount']}  Cost: {'unknown' if cost is None else f'${cost:.4f}'}")
        if payload.get("unpricedModels"):
            print(f"Unpriced models: {', '.join(payload['unpricedModels'])}")
        return
    if view == "context":
        phase_info = payload["phaseInfo"]
        print(f"Phases: {len(phase_info['phases'])}  Compactions: {phase_info['compactionCount']}")
        for stats in payload["stats"]:
            totals = stats["tokensByCategory"]
            print(
                f"{stats['turnId']:>8} phase={stats['phaseNumber']} total={stats['totalEstimatedTokens']} "
                f"claudeMd={totals['claudeMd']} files={totals['mentionedFiles']} tools={totals['toolOutputs']} "
                f"thinking={totals['thinkingText']} coord={totals['taskCoordination']} user={totals['userMessages']}"
            )
        return
    if view == "groups":
        for group in payload["items"]:
            label = group.get("userText") or group.get("outputPreview") or ""
            print(f"{group['id']:>12} [{group['kind']}] tools={group['toolCount']} {label[:80]}")
        return
    if view == "waterfall":
        for item in payload["items"]:
            indent = "  " * item["depth"]
            print(f"{item['startTime']} {item['durationMs']:>8}ms {indent}{item['label']}")
        return
    print(f"Session: {payload['sessionId']}  Ongoing: {payload['isOngoing']}")
    print(f"Project root: {payload['projectRoot']}  Branch: {payload['gitBranch'] or '-'}")
    print(f"Chunks: {len(payload['chunks'])}  Subagents: {len(payload['subagents'])}  Diagnostics: {len(payload['diagnostics'])}")


async def _run(path: Path, view: str, pricing_path: str, as_json: bool) -> int:
    fs = LocalFileSystemProvider(home_dir=config.HOME_DIR)
    pipeline = SessionPipeline(
        fs,
        pricing=load_pricing_table(pricing_path),
        home_dir=config.HOME_DIR,
        enterprise_path=config.ENTERPRISE_CLAUDE_MD,
        concurrency=config.SUBAGENT_CONCURRENCY,
    )
    result = await pipeline.reconstruct(str(path))
    if isinstance(result, SessionNotFound):
        print(f"Session not found: {result.path} ({result.reason})")
        return 1

    if view == "detail":
        payload = to_session_detail(result).model_dump(mode="json")
    elif view == "groups":
        groups = build_groups(result.items, result.context_stats, result.phase_info, result.subagents)
        payload = {"items": [group.model_dump(mode="json") for group in groups]}
    elif view == "metrics":
        payload = result.metrics.model_dump(mode="json")
    elif view == "waterfall":
        payload = build_waterfall(result.turns, result.subagents).model_dump(mode="json")
    else:
        payload = SessionContext(
            sessionId=result.session_id,
            stats=result.context_stats,
            phaseInfo=result.phase_info,
        ).model_dump(mode="json")

    if as_json:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        _print_summary(view, payload)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Reconstruct an agent session log")
    parser.add_argument("path", help="Path to a session .jsonl file")
    parser.add_argument("--view", choices=VIEWS, default="detail")
    parser.add_argument("--pricing", default=config.PRICING_PATH, help="JSON or YAML pricing table")
    parser.add_argument("--json", action="store_true", help="Print the full view as JSON")
    args = parser.parse_args()
    return asyncio.run(_run(Path(args.path).expanduser(), args.view, args.pricing, args.json))


if __name__ == "__main__":
    raise SystemExit(main())
