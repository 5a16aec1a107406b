"""Coded diagnostics and the policy deciding whether each is shown, dropped or fatal."""

from __future__ import annotations

import warnings
from dataclasses import dataclass

from rigmerge.errors import ConsistencyError

WARNING_CODES: dict[str, str] = {
    "W01": "joint rotation order differs from subject 0",
    "W02": "scene has no joints",
    "W03": "subject contributes no frames",
}
KNOWN_CODES: frozenset[str] = frozenset(WARNING_CODES)


class RigMergeWarning(UserWarning):
    """Warning with a machine-readable code."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(f"[{code}] {message}")


@dataclass(frozen=True)
class WarningPolicy:
    """Controls how individual warning codes are handled."""

    warn_as_error: frozenset[str] = frozenset()
    suppress: frozenset[str] = frozenset()

    def merged(self, other: WarningPolicy | None) -> WarningPolicy:
        """Return a policy combining this one with ``other`` (union of both sets)."""
        if other is None:
            return self
        return WarningPolicy(
            warn_as_error=self.warn_as_error | other.warn_as_error,
            suppress=self.suppress | other.suppress,
        )


def emit_warning(code: str, message: str, *, policy: WarningPolicy | None = None) -> None:
    """Issue ``code`` as a :class:`RigMergeWarning` unless the policy says otherwise.

    Suppressed codes are dropped; codes escalated with ``warn_as_error``
    raise :class:`ConsistencyError` carrying the same ``[code]`` prefix.
    """
    if policy is not None:
        if code in policy.suppress:
            return
        if code in policy.warn_as_error:
            raise ConsistencyError(f"[{code}] {message}")

    warnings.warn(RigMergeWarning(code, message), stacklevel=2)


def parse_code_list(raw: str) -> frozenset[str]:
    """Parse a comma-separated string of W-codes and validate them.

    Raises ``ValueError`` for unknown codes.
    """
    return validate_codes(raw.split(","))


def validate_codes(tokens: list[str]) -> frozenset[str]:
    """Validate an iterable of W-codes, ignoring blanks.

    Raises ``ValueError`` for unknown codes.
    """
    codes: set[str] = set()
    for token in tokens:
        token = token.strip()
        if not token:
            continue
        if token not in KNOWN_CODES:
            raise ValueError(f"Unknown warning code: {token!r} (known: {sorted(KNOWN_CODES)})")
        codes.add(token)
    return frozenset(codes)
