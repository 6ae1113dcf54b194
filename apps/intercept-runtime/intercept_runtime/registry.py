"""Mock rule registry scoped to a single test case."""

from __future__ import annotations

import itertools
import re
from dataclasses import dataclass
from typing import Union
from urllib.parse import urlsplit

import structlog

from .errors import InvalidRuleError
from .models import ANY_METHOD, HTTP_METHODS, MockRule, OutgoingRequest

LOGGER = structlog.get_logger("intercept_runtime")


@dataclass(frozen=True)
class RuleHandle:
    """Opaque token returned by ``register`` and accepted by ``unregister``."""

    rule_id: int
    alias: str | None = None


@dataclass
class _Entry:
    handle: RuleHandle
    rule: MockRule
    method: str
    matcher: re.Pattern[str]
    is_glob: bool
    remaining: int | None


class InterceptionRegistry:
    """Stores mock rules and resolves requests newest-rule-first."""

    def __init__(self) -> None:
        self._entries: list[_Entry] = []
        self._ids = itertools.count(1)
        self._logger = LOGGER.bind(component="registry")

    def register(self, rule: MockRule) -> RuleHandle:
        method = rule.method.upper()
        if method != ANY_METHOD and method not in HTTP_METHODS:
            raise InvalidRuleError(f"Unsupported HTTP method '{rule.method}'")
        if rule.response is not None and not 100 <= rule.response.status_code <= 599:
            raise InvalidRuleError(
                f"Status code {rule.response.status_code} for {rule.describe()} is outside 100-599"
            )
        if rule.times is not None and rule.times < 1:
            raise InvalidRuleError(f"'times' must be a positive integer, got {rule.times}")
        matcher, is_glob = compile_url_pattern(rule.url_pattern, regex=rule.regex)

        handle = RuleHandle(rule_id=next(self._ids), alias=rule.alias)
        self._entries.append(
            _Entry(
                handle=handle,
                rule=rule,
                method=method,
                matcher=matcher,
                is_glob=is_glob,
                remaining=rule.times,
            )
        )
        self._logger.debug(
            "rule_registered",
            rule_id=handle.rule_id,
            rule=rule.describe(),
            alias=rule.alias,
            spy=rule.is_spy,
        )
        return handle

    def unregister(self, handle: RuleHandle) -> None:
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.handle != handle]
        if len(self._entries) != before:
            self._logger.debug("rule_unregistered", rule_id=handle.rule_id)

    def match(self, request: OutgoingRequest) -> MockRule | None:
        entry = self._find(request)
        return entry.rule if entry else None

    def claim(self, request: OutgoingRequest) -> tuple[RuleHandle, MockRule] | None:
        """Match ``request`` and count the use against the rule's ``times`` limit."""

        entry = self._find(request)
        if entry is None:
            return None
        if entry.remaining is not None:
            entry.remaining -= 1
        return entry.handle, entry.rule

    def rules(self) -> list[MockRule]:
        return [entry.rule for entry in self._entries]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _find(self, request: OutgoingRequest) -> _Entry | None:
        method = request.method.upper()
        for entry in reversed(self._entries):
            if entry.remaining is not None and entry.remaining <= 0:
                continue
            if entry.method != ANY_METHOD and entry.method != method:
                continue
            if _url_matches(entry, request.url):
                return entry
        return None


def compile_url_pattern(pattern: Union[str, re.Pattern], *, regex: bool = False) -> tuple[re.Pattern[str], bool]:
    """Compile a URL pattern. Returns the compiled matcher and whether it is a glob."""

    if isinstance(pattern, re.Pattern):
        return pattern, False
    if not isinstance(pattern, str) or not pattern:
        raise InvalidRuleError("URL pattern must be a non-empty string or compiled regex")
    if regex:
        try:
            return re.compile(pattern), False
        except re.error as exc:
            raise InvalidRuleError(f"URL pattern {pattern!r} is not a valid regex: {exc}") from exc
    return re.compile(_glob_to_regex(pattern)), True


def _glob_to_regex(pattern: str) -> str:
    parts: list[str] = []
    depth = 0
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "*":
            if pattern.startswith("**", index):
                parts.append(".*")
                index += 2
                continue
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "{":
            depth += 1
            parts.append("(?:")
        elif char == "}":
            if depth == 0:
                raise InvalidRuleError(f"URL pattern {pattern!r} has an unbalanced '}}'")
            depth -= 1
            parts.append(")")
        elif char == "," and depth:
            parts.append("|")
        else:
            parts.append(re.escape(char))
        index += 1
    if depth:
        raise InvalidRuleError(f"URL pattern {pattern!r} has an unbalanced '{{'")
    return "".join(parts)


def _url_matches(entry: _Entry, url: str) -> bool:
    if not entry.is_glob:
        return entry.matcher.search(url) is not None
    parts = urlsplit(url)
    path = parts.path or "/"
    candidates = [url, url.split("#", 1)[0].split("?", 1)[0], path]
    if parts.query:
        candidates.append(f"{path}?{parts.query}")
    return any(entry.matcher.fullmatch(candidate) for candidate in candidates)
