from __future__ import annotations

import allure

from eos_driver.driver.failure_classifier import (
    AGENT_FAILURE_CLASSIFIER_VERSION,
    classify_agent_failure,
)

pytestmark = [
    allure.epic("Workflow Driver"),
    allure.feature("Agent Session"),
]


def test_classifier_version_is_stable() -> None:
    assert AGENT_FAILURE_CLASSIFIER_VERSION == 1


def test_classifier_prefers_billing_over_transient_status_code() -> None:
    classified = classify_agent_failure(
        status_code=503,
        body="Quota exceeded for this workspace",
    )
    assert not classified.transient
    assert classified.matched_rule == "billing_or_quota"
    assert classified.matched_pattern == "quota"


def test_classifier_maps_auth_status_codes_to_non_retryable() -> None:
    classified = classify_agent_failure(status_code=401, body="")
    assert not classified.transient
    assert classified.reason_code == "agent_access_or_auth"


def test_classifier_maps_rate_limit_to_transient() -> None:
    classified = classify_agent_failure(
        status_code=429,
        body="HTTP 429 too many requests, please retry",
    )
    assert classified.transient
    assert classified.matched_rule == "rate_limit_transient"


def test_classifier_treats_transport_errors_as_transient() -> None:
    classified = classify_agent_failure(status_code=None, body="")
    assert classified.transient
    assert classified.matched_rule == "transport_error"


def test_classifier_maps_server_errors_to_transient() -> None:
    classified = classify_agent_failure(status_code=502, body="<html>bad gateway</html>")
    assert classified.transient
    assert classified.matched_rule == "transient_status_code"


def test_classifier_falls_back_to_non_retryable() -> None:
    classified = classify_agent_failure(
        status_code=400,
        body="unknown slash command",
    )
    assert not classified.transient
    assert classified.matched_rule == "fallback_non_retryable"
    assert classified.to_details()["classifier_version"] == AGENT_FAILURE_CLASSIFIER_VERSION
