"""
Example: Audit a repository with a custom LLM command.

Usage:
    python examples/run_code_audit.py /path/to/repo
"""

import asyncio
import sys
from pathlib import Path

from taskwave import BatchRunner
from taskwave.core.invoker import CommandInvoker
from taskwave.jobs.audit import CodeAuditJob


async def main(repo: str):
    job = CodeAuditJob(max_depth=2)

    # Any command that reads the prompt on stdin and answers on stdout works
    runner = BatchRunner(
        name=job.name,
        invoker=CommandInvoker(["codeagent-wrapper", "--backend", "codex", "-"], timeout=120),
        concurrency=4,
        timeout=120,
        state_dir=Path(repo) / ".taskwave",
    )

    summary = await runner.run(job.handlers(), resume=True, cwd=repo)
    print(f"\n{summary.processed} directories audited, {summary.failed} failed")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "."))
