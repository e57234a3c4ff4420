#!/usr/bin/env python3
"""
Guest validation entry point.

Boots the hypervisor under test once per scenario and checks the guest
over SSH. Exits non-zero when any scenario fails.
"""
from __future__ import annotations

import argparse
import sys
from typing import List, Optional, Sequence

import settings

from guest_harness.errors import HarnessError
from guest_harness.models import ScenarioResult
from implementations.runner import ScenarioRunner
from implementations.scenarios import apply_overrides, default_scenarios, find_scenarios


def run_from_args(args: argparse.Namespace) -> int:
    scs = default_scenarios()
    if args.list:
        for s in scs:
            print(f"{s.name:32} {s.title}")
        return 0

    if args.workloads:
        settings.WORKLOADS_DIR = args.workloads

    scs = find_scenarios(scs, args.scenario)
    apply_overrides(scs, args.set)

    runner = ScenarioRunner(
        hv_bin=args.hv_bin,
        wait_for_ready=True if args.wait_ready else None,
    )

    results: List[ScenarioResult] = []
    for s in scs:
        res = runner.run(s)
        results.append(res)
        if not res.ok and args.fail_fast:
            print(f"Aborting run after {s.name} failed (--fail-fast)", file=sys.stderr)
            break

    print("-" * 60)
    for res in results:
        if res.ok:
            print(f"PASSED {res.name} ({res.duration_s:.1f}s)")
        else:
            print(f"FAILED [{res.kind}] {res.name}: {res.message}")
    return 0 if results and all(r.ok for r in results) else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Boot guests under the hypervisor and validate them")
    p.add_argument("--list", action="store_true", help="List scenarios and exit")
    p.add_argument("--scenario", action="append",
                   help="Scenario(s) to run; all when omitted (repeatable)")
    p.add_argument("--fail-fast", action="store_true",
                   help="Stop at the first failed scenario")
    p.add_argument("--hv-bin", help=f"Hypervisor executable (default: {settings.HV_BIN})")
    p.add_argument("--workloads", help=f"Workloads directory (default: {settings.WORKLOADS_DIR})")
    p.add_argument("--wait-ready", action="store_true",
                   help="Poll for guest SSH instead of a fixed boot settle delay")
    p.add_argument("--set", action="append", default=[],
                   help="Override a scenario parameter for all scenarios, key=value "
                        "(repeatable). Example: --set cpus=2 --set memory_size=1024M")
    args = p.parse_args(argv)

    try:
        return run_from_args(args)
    except HarnessError as e:
        print(f"Error [{e.kind}]: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
