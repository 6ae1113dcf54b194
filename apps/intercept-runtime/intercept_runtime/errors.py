"""Error types raised by the interception runtime."""

from __future__ import annotations


class InterceptRuntimeError(RuntimeError):
    """Base class for every error raised by the runtime."""


class InvalidRuleError(InterceptRuntimeError):
    """Raised when a mock rule cannot be registered.

    Authoring errors are never retried: the attempt that raised it fails final.
    """


class WaitTimeoutError(InterceptRuntimeError):
    """Raised when an aliased exchange does not resolve before its timeout."""

    def __init__(self, alias: str, timeout_ms: float) -> None:
        self.alias = alias
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Timed out after {timeout_ms:g}ms waiting for '@{alias}': no matching request was resolved"
        )


class RouterInternalError(InterceptRuntimeError):
    """Raised when exchange bookkeeping is inconsistent. Aborts the whole run."""
