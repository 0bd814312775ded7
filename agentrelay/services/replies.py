"""Reply classification: turns raw agent text into a tagged result.

Sentinel strings (NO_REPLY, HEARTBEAT_OK, gateway placeholders) are only
ever compared here. Everything downstream switches on ``ReplyKind``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

HEARTBEAT_OK = "HEARTBEAT_OK"

NO_REPLY_SIGNALS = frozenset({"NO_REPLY", "NO", "NO_", HEARTBEAT_OK})

# Emitted by the gateway itself when the agent run produced nothing.
PLACEHOLDER_MESSAGES = (
    "No response from OpenClaw.",
    "No reply from agent.",
    "No response from agent.",
)

_MENTION_PREFIX_RE = re.compile(r"^(@[A-Za-z0-9_-]+)(\s+@[A-Za-z0-9_-]+)*$")
_HEARTBEAT_LOADING_RE = re.compile(r"^Loading context for heartbeat(?:\.\.\.)?$", re.IGNORECASE)
_HEARTBEAT_TOKEN_RE = re.compile(r"\bHEARTBEAT_OK\b")

NO_RESPONSE_FALLBACK_MESSAGE = "\n".join([
    "**Summary**",
    "- The agent gateway did not return a response for this run.",
    "",
    "**Work done**",
    "- None (no output received).",
    "",
    "**Next step (one)**",
    "- Retry once the runtime or gateway is healthy; check gateway logs if this persists.",
    "",
    "**Sources**",
    "- None.",
])

FALLBACK_NO_REPLY_AFTER_TOOLS = "\n".join([
    "**Summary**",
    "- Tool(s) were executed; the final reply could not be retrieved.",
    "",
    "**Work done**",
    "- Executed tool calls for this notification.",
    "",
    "**Artifacts**",
    "- None.",
    "",
    "**Risks / blockers**",
    "- If a tool reported an error (success: false), consider the task BLOCKED and do not claim status was changed.",
    "",
    "**Next step (one)**",
    "- Retry once the runtime or gateway is healthy.",
    "",
    "**Sources**",
    "- None.",
])


class ReplyKind(str, Enum):
    OK = "ok"
    NO_OP = "no_op"
    AMBIGUOUS = "ambiguous"
    EMPTY = "empty"
    PLACEHOLDER = "placeholder"

    @property
    def is_no_op(self) -> bool:
        return self in (ReplyKind.NO_OP, ReplyKind.AMBIGUOUS)


@dataclass(frozen=True)
class ParsedReply:
    kind: ReplyKind
    text: str = ""
    mention_prefix: str | None = None

    @property
    def is_usable(self) -> bool:
        return self.kind is ReplyKind.OK


def _split_placeholder(text: str) -> tuple[bool, str | None]:
    if text in PLACEHOLDER_MESSAGES:
        return True, None
    for message in PLACEHOLDER_MESSAGES:
        if text.endswith(message):
            prefix = text[: -len(message)].strip()
            if not prefix:
                return True, None
            if _MENTION_PREFIX_RE.match(prefix):
                return True, prefix
            return False, None
    return False, None


def parse_delivery_reply(raw: str | None) -> ParsedReply:
    """Classify the text an agent returned for a notification."""
    text = (raw or "").strip()
    if not text:
        return ParsedReply(ReplyKind.EMPTY)
    if text in NO_REPLY_SIGNALS:
        return ParsedReply(ReplyKind.NO_OP, text)
    is_placeholder, prefix = _split_placeholder(text)
    if is_placeholder:
        return ParsedReply(ReplyKind.PLACEHOLDER, text, mention_prefix=prefix)
    return ParsedReply(ReplyKind.OK, text)


def is_heartbeat_ok(raw: str | None) -> bool:
    """True for a bare HEARTBEAT_OK, optionally after "Loading context" lines."""
    text = (raw or "").strip()
    if not text:
        return False
    if text == HEARTBEAT_OK:
        return True
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines or lines[-1] != HEARTBEAT_OK:
        return False
    return all(_HEARTBEAT_LOADING_RE.match(line) for line in lines[:-1])


def parse_heartbeat_reply(raw: str | None) -> ParsedReply:
    """Classify a heartbeat reply.

    Text that mixes narrative with the HEARTBEAT_OK token is AMBIGUOUS and
    handled like a no-op, so a half-hearted "nothing to do" never lands in
    a task thread.
    """
    text = (raw or "").strip()
    if not text:
        return ParsedReply(ReplyKind.EMPTY)
    if is_heartbeat_ok(text):
        return ParsedReply(ReplyKind.NO_OP, HEARTBEAT_OK)
    if _HEARTBEAT_TOKEN_RE.search(text):
        return ParsedReply(ReplyKind.AMBIGUOUS, HEARTBEAT_OK)
    return ParsedReply(ReplyKind.OK, text)


def build_no_response_fallback(mention_prefix: str | None = None) -> str:
    prefix = f"{mention_prefix.strip()}\n\n" if mention_prefix else ""
    return f"{prefix}{NO_RESPONSE_FALLBACK_MESSAGE}"


def is_no_response_fallback(content: str | None) -> bool:
    """True for a fallback body, plain or behind an @mention prefix."""
    text = (content or "").strip()
    if not text:
        return False
    if text == NO_RESPONSE_FALLBACK_MESSAGE:
        return True
    if not text.endswith(NO_RESPONSE_FALLBACK_MESSAGE):
        return False
    prefix = text[: -len(NO_RESPONSE_FALLBACK_MESSAGE)].strip()
    return not prefix or bool(_MENTION_PREFIX_RE.match(prefix))
