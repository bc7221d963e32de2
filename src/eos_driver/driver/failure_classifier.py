"""Deterministic classification of agent API failures for retry policy."""

from __future__ import annotations

from dataclasses import dataclass

AGENT_FAILURE_CLASSIFIER_VERSION = 1

TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504})
AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})


@dataclass(slots=True)
class AgentFailureClassification:
    """Normalized failure classification result."""

    transient: bool
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for logs."""

        return {
            "classifier_version": AGENT_FAILURE_CLASSIFIER_VERSION,
            "transient": self.transient,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


@dataclass(frozen=True, slots=True)
class _Rule:
    name: str
    reason_code: str
    transient: bool
    body_patterns: tuple[str, ...] = ()
    status_codes: frozenset[int] = frozenset()
    on_transport_error: bool = False


# Ordered; first match wins.
_RULES: tuple[_Rule, ...] = (
    _Rule(
        name="billing_or_quota",
        reason_code="agent_billing_or_quota",
        transient=False,
        body_patterns=("quota", "billing", "payment", "credits", "usage limit"),
    ),
    _Rule(
        name="auth_status_code",
        reason_code="agent_access_or_auth",
        transient=False,
        status_codes=AUTH_STATUS_CODES,
    ),
    _Rule(
        name="access_or_auth",
        reason_code="agent_access_or_auth",
        transient=False,
        body_patterns=(
            "unauthorized",
            "forbidden",
            "permission denied",
            "invalid api key",
            "invalid token",
            "authentication",
        ),
    ),
    _Rule(
        name="rate_limit_transient",
        reason_code="agent_rate_limit_transient",
        transient=True,
        body_patterns=(
            "too many requests",
            "rate limit",
            "overloaded",
            "please retry",
            "try again later",
        ),
        status_codes=frozenset({429}),
    ),
    _Rule(
        name="generic_transient",
        reason_code="agent_transient",
        transient=True,
        body_patterns=(
            "temporarily unavailable",
            "temporary failure",
            "connection reset",
            "connection refused",
            "network error",
            "timed out",
        ),
    ),
    _Rule(
        name="transport_error",
        reason_code="agent_transient",
        transient=True,
        on_transport_error=True,
    ),
    _Rule(
        name="transient_status_code",
        reason_code="agent_transient",
        transient=True,
        status_codes=TRANSIENT_STATUS_CODES,
    ),
)


def classify_agent_failure(
    *,
    status_code: int | None,
    body: str,
) -> AgentFailureClassification:
    """Classify a failed agent API call.

    ``status_code`` is ``None`` when the request never produced a response
    (transport error); such failures are always transient.
    """

    haystack = body.lower()
    for rule in _RULES:
        pattern = next((item for item in rule.body_patterns if item in haystack), None)
        if (
            pattern is not None
            or (status_code is not None and status_code in rule.status_codes)
            or (status_code is None and rule.on_transport_error)
        ):
            return AgentFailureClassification(
                transient=rule.transient,
                reason_code=rule.reason_code,
                matched_rule=rule.name,
                matched_pattern=pattern,
            )
    return AgentFailureClassification(
        transient=False,
        reason_code="agent_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )
