"""Default settings shared by the runner, the planner and the CLI."""

DEFAULT_CONCURRENCY = 6

# Seconds per LLM invocation
DEFAULT_TIMEOUT = 180.0

DEFAULT_COMMAND = ("codeagent-wrapper", "--backend", "codex", "-")

DEFAULT_MAX_PARALLEL = 3
DEFAULT_KANBAN_URL = "http://127.0.0.1:3007"

HISTORY_LIMIT = 10
