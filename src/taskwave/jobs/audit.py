"""
Code Audit Job — security and quality review of every code directory.

Each directory holding source files becomes one work item. The LLM answers
with a JSON verdict, which is rendered to `AUDIT.md` inside the directory.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path

import aiofiles

from taskwave.core.invoker import InvocationOutcome
from taskwave.core.parsing import Parsed, outcome_failure, parse_payload
from taskwave.core.runner import TaskHandlers
from taskwave.models.task import WorkItem

logger = logging.getLogger(__name__)

IGNORE_DIRS = {
    "node_modules", ".git", "dist", "build", ".next", "__pycache__",
    "venv", ".venv", "target", "vendor", ".cache", "coverage",
}

CODE_EXTENSIONS = {
    ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs",
    ".py", ".go", ".rs", ".java", ".rb", ".php",
}

SEVERITIES = ("low", "medium", "high", "critical")

PROMPT_TEMPLATE = """You are a code security auditor. Review the code directory below and check for:
1. Security vulnerabilities (injection, XSS, leaked secrets, ...)
2. Code quality problems (error handling, resource leaks, ...)
3. Violations of common best practices

Directory: {directory}
{files}
Reply with JSON only:
{{
  "severity": "low|medium|high|critical",
  "issues": [{{"type": "...", "description": "...", "file": "...", "line": "..."}}],
  "summary": "short summary"
}}"""


def find_code_dirs(root: Path, max_depth: int = 3) -> list[Path]:
    """Directories under `root` (inclusive) that directly contain code files."""
    found: list[Path] = []

    def walk(directory: Path, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            logger.debug(f"Cannot list {directory}: {e}")
            return

        if any(e.is_file() and e.suffix.lower() in CODE_EXTENSIONS for e in entries):
            found.append(directory)
        for entry in entries:
            if entry.is_dir() and entry.name not in IGNORE_DIRS:
                walk(entry, depth + 1)

    walk(root, 0)
    return found


def read_code_files(directory: Path, max_files: int = 5, max_lines: int = 50) -> str:
    """The first lines of the first few code files, each under a header."""
    chunks = []
    for entry in sorted(directory.iterdir()):
        if len(chunks) >= max_files:
            break
        if not entry.is_file() or entry.suffix.lower() not in CODE_EXTENSIONS:
            continue
        try:
            lines = entry.read_text(encoding="utf-8", errors="replace").splitlines()[:max_lines]
        except OSError as e:
            logger.debug(f"Cannot read {entry}: {e}")
            continue
        chunks.append(f"\n--- {entry.name} ---\n" + "\n".join(lines) + "\n")
    return "".join(chunks)


def render_audit(item_id: str, audit: dict) -> str:
    issues = audit.get("issues") or []
    if issues:
        issue_lines = "\n".join(
            f"- **{i.get('type', '?')}** ({i.get('file', '?')}:{i.get('line') or '?'}): "
            f"{i.get('description', '')}"
            for i in issues
        )
    else:
        issue_lines = "None found"

    return (
        f"# Code Audit - {item_id}\n\n"
        f"Generated: {datetime.now(timezone.utc).isoformat()}\n\n"
        f"## Severity: {audit['severity']}\n\n"
        f"## Summary\n{audit.get('summary', '')}\n\n"
        f"## Issues\n{issue_lines}\n"
    )


class CodeAuditJob:
    """Handlers for the `code-audit` batch run."""

    name = "code-audit"

    def __init__(self, max_depth: int = 3, report_name: str = "AUDIT.md"):
        self.max_depth = max_depth
        self.report_name = report_name

    def scan(self, cwd: str) -> list[WorkItem]:
        root = Path(cwd)
        return [
            WorkItem(id=str(d.relative_to(root)) if d != root else ".", fields={"path": str(d)})
            for d in find_code_dirs(root, self.max_depth)
        ]

    def build_prompt(self, item: WorkItem) -> str:
        return PROMPT_TEMPLATE.format(
            directory=item.id, files=read_code_files(Path(item["path"]))
        )

    async def handle_result(self, item: WorkItem, outcome: InvocationOutcome) -> dict:
        failure = outcome_failure(outcome)
        if failure is not None:
            return failure

        parsed = parse_payload(outcome.output, required=("severity",))
        if not isinstance(parsed, Parsed):
            result = {"status": "parse_error", "reason": parsed.reason}
            if outcome.session_id:
                result["sessionId"] = outcome.session_id
            return result

        audit = parsed.data
        if audit["severity"] not in SEVERITIES:
            return {"status": "parse_error", "reason": f"unknown severity {audit['severity']!r}"}

        report = Path(item["path"]) / self.report_name
        async with aiofiles.open(report, "w") as f:
            await f.write(render_audit(item.id, audit))

        return {
            "status": "critical" if audit["severity"] == "critical" else "audited",
            "severity": audit["severity"],
            "issueCount": len(audit.get("issues") or []),
        }

    def handlers(self) -> TaskHandlers:
        return TaskHandlers(
            scan=self.scan,
            build_prompt=self.build_prompt,
            handle_result=self.handle_result,
        )
