#!/usr/bin/env python3
"""
Follow a verification pipeline run in the terminal.

Replays a scripted storyline (or drives a live generation run) against a
running server and renders the step board and terminal log as events arrive.

Run:
  1. Start the API:  uvicorn whitewall.main:app --port 8080
  2. Watch a scenario:
       python scripts/watch_pipeline.py verified-agent [--present] [--url http://localhost:8080]
     or a live run:
       python scripts/watch_pipeline.py live --prompt "a red fox" --agent-id 42 --owner 0xabc...
"""

import argparse
import asyncio
import sys
from datetime import datetime

import httpx

from whitewall.pipeline.client import follow_run
from whitewall.pipeline.events import LogLevel, StepStatus
from whitewall.pipeline.reducer import RunState

# ─── Colors ───

BOLD = "\033[1m"
DIM = "\033[2m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
CYAN = "\033[96m"
RESET = "\033[0m"

_LEVEL_COLOR = {
    LogLevel.INFO: CYAN,
    LogLevel.PASS: GREEN,
    LogLevel.FAIL: RED,
    LogLevel.WARN: YELLOW,
}

_STEP_MARK = {
    StepStatus.IDLE: f"{DIM}·{RESET}",
    StepStatus.ACTIVE: f"{CYAN}…{RESET}",
    StepStatus.PASS: f"{GREEN}✓{RESET}",
    StepStatus.FAIL: f"{RED}✗{RESET}",
    StepStatus.SKIPPED: f"{DIM}-{RESET}",
}


def print_board(state: RunState) -> None:
    print(f"\n{BOLD}Pipeline{RESET}")
    for s in state.steps:
        extra = f" {DIM}{s.detail}{RESET}" if s.detail else ""
        timing = f" {DIM}({s.timing_ms}ms){RESET}" if s.timing_ms else ""
        print(f"  {_STEP_MARK[s.status]} {s.label:<18}{extra}{timing}")

    if state.result is not None:
        r = state.result
        if r.granted:
            print(f"\n{GREEN}{BOLD}ACCESS GRANTED{RESET}  tier={r.tier}  human={r.accountable_human}")
            if r.artifact_url:
                print(f"  artifact: {r.artifact_url}")
        else:
            print(f"\n{RED}{BOLD}ACCESS DENIED{RESET}  {r.reason}")


async def watch(args: argparse.Namespace) -> int:
    async with httpx.AsyncClient(base_url=args.url, timeout=httpx.Timeout(10.0, read=300.0)) as client:
        if args.scenario == "live":
            path = "/generate-video" if args.video else "/generate"
            states = follow_run(
                client, "POST", path,
                json_body={"prompt": args.prompt, "agentId": args.agent_id, "ownerAddress": args.owner},
            )
        else:
            params = {"scenario": args.scenario}
            if args.present:
                params["mode"] = "present"
            states = follow_run(client, "GET", "/simulate", params=params, run_id=args.scenario)

        printed = 0
        state: RunState | None = None
        async for state in states:
            for entry in state.log[printed:]:
                ts = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%H:%M:%S.%f")[:-3]
                color = _LEVEL_COLOR[entry.level]
                print(f"{DIM}{ts}{RESET} {color}[{entry.tag}]{RESET} {entry.message}")
            printed = len(state.log)

    if state is None:
        return 1
    print_board(state)
    return 0 if state.result is not None and state.result.granted else 2


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("scenario", help="anon-bot | registered-bot | verified-agent | live")
    parser.add_argument("--url", default="http://localhost:8080")
    parser.add_argument("--present", action="store_true", help="presentation-paced playback")
    parser.add_argument("--prompt", default="")
    parser.add_argument("--agent-id", default="")
    parser.add_argument("--owner", default="")
    parser.add_argument("--video", action="store_true")
    sys.exit(asyncio.run(watch(parser.parse_args())))


if __name__ == "__main__":
    main()
