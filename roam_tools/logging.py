"""Logging setup shared by the ``roam`` CLI and the ``roam-mcp`` server.

Everything goes to stderr: the MCP stdio transport owns stdout, and the CLI
prints tool output there.

Levels:
- DEBUG: port discovery, token probes
- INFO: retries, config writes, mutating tool calls
- WARNING: retry exhaustion, insecure config permissions, duplicate graphs
"""

import logging
import os
import re
import sys
from dataclasses import dataclass, field
from typing import List, Optional

LOG_LEVEL_ENV_VAR = "ROAM_TOOLS_LOG_LEVEL"

DEFAULT_REDACT_PATTERNS: List[str] = [
    # Roam Local API tokens
    r"\broam-graph-local-token-([A-Za-z0-9_\-]{8,})",
    # Bearer credentials in headers
    r"\bBearer\s+([A-Za-z0-9._\-+=]{12,})",
]

# Third-party loggers that are too noisy at INFO level
NOISY_LOGGERS = ["httpx", "httpcore", "mcp", "fastmcp"]


@dataclass
class SecretRedactor:
    """Masks API tokens in log text, keeping both ends for identification."""

    patterns: List["re.Pattern[str]"] = field(default_factory=list)
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.patterns:
            self.patterns = [re.compile(p) for p in DEFAULT_REDACT_PATTERNS]

    def redact(self, text: str) -> str:
        if not self.enabled or not text:
            return text
        result = text
        for pattern in self.patterns:
            result = pattern.sub(self._mask_match, result)
        return result

    def _mask_match(self, match: "re.Match[str]") -> str:
        full = match.group(0)
        token = match.group(1) if match.lastindex else full
        if "..." in token:
            return full
        if len(token) < 12:
            return full.replace(token, "***")
        return full.replace(token, f"{token[:4]}...{token[-4:]}")


class RedactingFilter(logging.Filter):
    """Rewrites each record's message through a ``SecretRedactor``."""

    def __init__(self, redactor: Optional[SecretRedactor] = None):
        super().__init__()
        self.redactor = redactor or SecretRedactor()

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redactor.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def resolve_level(level: Optional[str], default: str) -> int:
    """Explicit level, else ``ROAM_TOOLS_LOG_LEVEL``, else ``default``."""
    name = (level or os.environ.get(LOG_LEVEL_ENV_VAR) or default).upper()
    if name not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        name = default.upper()
    return getattr(logging, name)


def configure_logging(level: Optional[str] = None, default: str = "WARNING") -> None:
    """Configure root logging once at startup.

    Args:
        level: Log level name. If None, uses ROAM_TOOLS_LOG_LEVEL or ``default``.
        default: Fallback level (the CLI keeps quiet, the server logs INFO).
    """
    log_level = resolve_level(level, default)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    handler.addFilter(RedactingFilter())

    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(log_level, logging.WARNING))
