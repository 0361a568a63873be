# SPDX-License-Identifier: LGPL-3.0-or-later
# volimporter/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    # Exit codes are typically 0..255; keep it safe and predictable.
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


_SECRET_KEY_PARTS = (
    "pass",
    "password",
    "secret",
    "token",
    "auth",
    "cookie",
    "bearer",
    "private",
    "access_key",
    "key_id",
)

REDACTED = "***REDACTED***"


def _is_secret_key(k: str) -> bool:
    ks = (k or "").lower()
    return any(p in ks for p in _SECRET_KEY_PARTS)


def redact_context(ctx: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (REDACTED if _is_secret_key(str(k)) else v) for k, v in ctx.items()}


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    # Stable order, redaction, single-line.
    parts = []
    for k in sorted(ctx.keys()):
        v = ctx.get(k)
        if _is_secret_key(str(k)):
            parts.append(f"{k}=<redacted>")
        else:
            parts.append(f"{k}={v!r}")
    return ", ".join(parts)


@dataclass(eq=False)
class VolImporterError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON (code, reason, phase)
      - readable __str__ (what users see)
      - safe code handling (never crashes on int())

    `reason` is the machine-readable code written onto request status;
    `phase` names the copy phase the error belongs to.
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    reason = "ImportFailed"
    phase = "import"

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        if self.context is None:
            self.context = {}
        super().__init__(self.msg)
        # Some tooling inspects Exception.args directly.
        self.args = (self.msg,)

    def with_context(self, **ctx: Any) -> "VolImporterError":
        assert self.context is not None
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        base = self.msg or self.__class__.__name__
        parts = [base]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context), limit=600)}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message(include_context=False, include_cause=False)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "reason": self.reason,
            "phase": self.phase,
            "message": self.msg,
            "context": redact_context(self.context or {}),
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(VolImporterError):
    """User-facing fatal error (exit code should be honored by top-level main())."""
    reason = "Fatal"


class ConfigError(VolImporterError):
    reason = "InvalidConfiguration"
    phase = "config"


# ---------------------------------------------------------------------------
# Copy engine taxonomy
# ---------------------------------------------------------------------------

class TransportResolutionError(VolImporterError):
    """No transport provider is registered for the requested source kind."""
    reason = "UnknownSource"
    phase = "resolve"


class FetchError(VolImporterError):
    """Fetching the source failed for a reason not covered by a subclass."""
    reason = "FetchFailed"
    phase = "fetch"


class FetchAuthError(FetchError):
    reason = "Unauthorized"


class FetchNotFoundError(FetchError):
    reason = "NotFound"


class FetchTLSError(FetchError):
    """Untrusted certificate, or the insecure flag and trust configuration disagree."""
    reason = "TLSFailure"


class FetchTimeoutError(FetchError):
    reason = "Timeout"


@dataclass(eq=False)
class ConversionError(VolImporterError):
    """Unrecognized or corrupt encoding, or a missing archive entry."""
    stage: str = "convert"

    reason = "ConversionFailed"
    phase = "convert"

    def __post_init__(self) -> None:
        super().__post_init__()
        assert self.context is not None
        self.context.setdefault("stage", self.stage)

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        base = super().user_message(include_context=include_context, include_cause=include_cause)
        return f"{self.stage}: {base}"


class WriteError(VolImporterError):
    """Destination unwritable (full disk, permissions, ...)."""
    reason = "WriteFailed"
    phase = "write"


class CapacityExceededError(VolImporterError):
    reason = "CapacityExceeded"
    phase = "capacity"


class ImportCancelledError(VolImporterError):
    reason = "Cancelled"
    phase = "cancel"


# ---------------------------------------------------------------------------
# Controller / external collaborator errors
# ---------------------------------------------------------------------------

class ClusterError(VolImporterError):
    """The external state store rejected an operation."""
    reason = "ClusterError"
    phase = "reconcile"


class AlreadyExistsError(ClusterError):
    reason = "AlreadyExists"


class NotFoundError(ClusterError):
    reason = "NotFound"


class ConflictError(ClusterError):
    """Optimistic concurrency failure: the object changed since it was read."""
    reason = "Conflict"


class CredentialError(VolImporterError):
    reason = "CredentialsUnavailable"
    phase = "credentials"


def wrap_fatal(msg: str, exc: Optional[BaseException] = None, code: int = 1, **context: Any) -> Fatal:
    return Fatal(code=code, msg=msg, cause=exc, context=context or None)


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, VolImporterError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
