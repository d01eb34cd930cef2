"""Test helpers for kube-rollout tools."""

import sys

from kube_rollout.command import Command, run

KUBE_ROLLOUT_CMD = [sys.executable, "-m", "kube_rollout.tool.kube_rollout"]


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command(KUBE_ROLLOUT_CMD + args, env=env))
