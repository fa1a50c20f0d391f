# =============================================================================
# Provider Rejection Classifier — Error Payload → Remediation
# =============================================================================
#
# Providers drift: a model may reject `temperature`, not know `reasoning`,
# or only accept `max_tokens`. Instead of a per-model capability table we
# read the rejection and decide how to rewrite the next attempt.
#
# A rejection is matched against each known parameter by:
#   1. the structured error object (`error.param == <name>`), or
#   2. the message text ("unknown parameter" + <name>, plus any extra
#      markers registered for that parameter).
#
# Each remediation is an immutable description; `apply()` returns a new
# payload and never mutates the one it was given.
# =============================================================================

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from docqa.services.errors import (
    ModelUnavailableError,
    ProviderCapabilityError,
    ProviderError,
)


class RemediationAction(enum.Enum):
    DROP = "drop"
    RENAME = "rename"


@dataclass(frozen=True)
class Remediation:
    """How to rewrite a payload whose `param` the provider rejected."""

    param: str
    action: RemediationAction
    rename_to: str | None = None
    # Additional phrases that, together with the param name, mark a rejection
    extra_markers: tuple[str, ...] = ()

    def matches(self, error: Mapping[str, Any] | None, text: str) -> bool:
        if error and error.get("param") == self.param:
            return True
        if self.param not in text:
            return False
        if "unknown parameter" in text or f'"param": "{self.param}"' in text:
            return True
        return any(marker in text for marker in self.extra_markers)

    def applies_to(self, payload: Mapping[str, Any]) -> bool:
        return payload.get(self.param) is not None

    def apply(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        updated = {k: v for k, v in payload.items() if k != self.param}
        if self.action is RemediationAction.RENAME and self.rename_to:
            updated[self.rename_to] = payload[self.param]
        return updated


KNOWN_REMEDIATIONS: tuple[Remediation, ...] = (
    Remediation("reasoning", RemediationAction.DROP),
    Remediation(
        "temperature",
        RemediationAction.DROP,
        extra_markers=("unsupported value", "unsupported parameter"),
    ),
    Remediation(
        "max_completion_tokens",
        RemediationAction.RENAME,
        rename_to="max_tokens",
    ),
)

_UNAVAILABLE_MARKERS = ("model_not_found", "does not exist", "not have access")


def classify_rejection(
    message: str,
    *,
    status_code: int | None = None,
    error: Mapping[str, Any] | None = None,
) -> ProviderError:
    """
    Turn a provider rejection into the matching taxonomy error.

    Args:
        message: Human-readable error text from the provider/SDK.
        status_code: HTTP status of the rejection, when known.
        error: Structured error object (`{"message", "type", "param",
            "code"}`), when the provider sent one.

    Returns:
        ModelUnavailableError, ProviderCapabilityError carrying the matching
        remediations, or a plain ProviderError for anything unrecognised.
    """
    text = _normalise(message, error)
    detail: Any = dict(error) if error else message

    if _is_model_unavailable(text, status_code, error):
        return ModelUnavailableError(message, status_code=status_code, detail=detail)

    remediations = tuple(r for r in KNOWN_REMEDIATIONS if r.matches(error, text))
    if remediations:
        return ProviderCapabilityError(
            message,
            remediations=remediations,
            status_code=status_code,
            detail=detail,
        )

    return ProviderError(message, status_code=status_code, detail=detail)


def apply_remediations(
    payload: Mapping[str, Any],
    remediations: tuple[Remediation, ...],
) -> dict[str, Any] | None:
    """
    Build the next attempt's payload.

    Returns None when none of the remediations changes the payload, meaning
    a retry would repeat the same rejected request.
    """
    current: dict[str, Any] = dict(payload)
    changed = False
    for remediation in remediations:
        if remediation.applies_to(current):
            current = remediation.apply(current)
            changed = True
    return current if changed else None


def _is_model_unavailable(
    text: str,
    status_code: int | None,
    error: Mapping[str, Any] | None,
) -> bool:
    if status_code == 404:
        return True
    if error and error.get("code") == "model_not_found":
        return True
    return any(marker in text for marker in _UNAVAILABLE_MARKERS)


def _normalise(message: str, error: Mapping[str, Any] | None) -> str:
    parts = [message or ""]
    if error:
        parts.append(json.dumps(dict(error), default=str))
    return " ".join(parts).lower()
