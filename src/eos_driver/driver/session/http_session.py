"""HTTP session for the agent command API."""

from __future__ import annotations

import logging
import math
import random
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from eos_driver import __version__
from eos_driver.driver.errors import AgentFailure, CommunicationError
from eos_driver.driver.failure_classifier import classify_agent_failure
from eos_driver.driver.models import (
    AgentCommand,
    FailureClass,
    StageOutcome,
    StageStatus,
    SubmissionHandle,
)
from eos_driver.driver.sanitization import sanitize_summary
from eos_driver.time_utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_BASE_SECONDS = 1.0
DEFAULT_RETRY_MAX_SECONDS = 30.0
DEFAULT_USER_AGENT = f"eos-driver/{__version__}"

COMMANDS_PATH = "/v1/commands"
TIMEOUT_ERROR_DETAIL = "Timeout"

SUCCEEDED_STATUSES = frozenset({"succeeded", "completed", "success"})
FAILED_STATUSES = frozenset({"failed", "error", "canceled", "cancelled"})


class HttpAgentSession:
    """Submits stage commands over HTTP and polls them to completion."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        base_url: str,
        api_token: str,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
        retry_max_seconds: float = DEFAULT_RETRY_MAX_SECONDS,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.request_timeout_seconds = request_timeout_seconds
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self._sleep = sleep
        self._monotonic = monotonic
        self._random = rng or random.Random()  # noqa: S311
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(request_timeout_seconds, connect=10.0),
            headers={
                "Authorization": f"Bearer {api_token}",
                "Accept": "application/json",
                "User-Agent": DEFAULT_USER_AGENT,
            },
            transport=transport,
        )

    def send(self, command: AgentCommand) -> SubmissionHandle:
        sent_at = utc_now()
        payload = self._request_json(
            "POST",
            COMMANDS_PATH,
            content=command.to_payload(),
        )
        submission_id = payload.get("submission_id")
        if not isinstance(submission_id, str) or not submission_id:
            raise AgentFailure(
                f"Agent accepted /{command.stage.command_name} without a submission_id.",
            )
        conversation_id = payload.get("conversation_id")
        logger.info(
            "Submitted /%s as %s (conversation %s)",
            command.stage.command_name,
            submission_id,
            conversation_id or command.conversation_id,
        )
        return SubmissionHandle(
            submission_id=submission_id,
            stage=command.stage,
            sent_at=sent_at,
            conversation_id=(
                conversation_id if isinstance(conversation_id, str) and conversation_id
                else command.conversation_id
            ),
        )

    def await_completion(
        self,
        handle: SubmissionHandle,
        *,
        poll_interval: float,
        timeout: float,
    ) -> StageOutcome:
        if not (math.isfinite(timeout) and timeout > 0):
            raise ValueError(f"timeout must be a finite number > 0, got {timeout!r}")
        if not (math.isfinite(poll_interval) and poll_interval > 0):
            raise ValueError(f"poll_interval must be a finite number > 0, got {poll_interval!r}")
        deadline = self._monotonic() + timeout
        last_payload: dict[str, Any] = {}
        path = f"{COMMANDS_PATH}/{handle.submission_id}"

        while True:
            if self._monotonic() >= deadline:
                return _timeout_outcome(handle, last_payload)
            try:
                payload = self._request_json("GET", path, deadline=deadline)
            except CommunicationError as error:
                if self._monotonic() >= deadline:
                    return _timeout_outcome(handle, last_payload)
                return _failed_outcome(
                    handle,
                    last_payload,
                    failure_class=FailureClass.COMMUNICATION,
                    error_detail=str(error),
                )
            except AgentFailure as error:
                return _failed_outcome(
                    handle,
                    last_payload,
                    failure_class=FailureClass.AGENT_FAILURE,
                    error_detail=str(error),
                )

            last_payload = payload
            outcome = outcome_from_status(handle, payload, completed_at=utc_now())
            if outcome is not None:
                return outcome

            remaining = deadline - self._monotonic()
            if remaining <= 0:
                return _timeout_outcome(handle, last_payload)
            logger.debug(
                "Submission %s still %s; next poll in %.1fs",
                handle.submission_id,
                payload.get("status"),
                min(poll_interval, remaining),
            )
            self._sleep(min(poll_interval, remaining))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpAgentSession:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        content: bytes | None = None,
        deadline: float | None = None,
    ) -> dict[str, Any]:
        attempt = 0
        while True:
            attempt += 1
            headers = {"Content-Type": "application/json"} if content is not None else None
            try:
                response = self._client.request(
                    method,
                    path,
                    content=content,
                    headers=headers,
                    timeout=self._request_timeout(deadline),
                )
            except httpx.HTTPError as error:
                classification = classify_agent_failure(status_code=None, body="")
                detail = f"{method} {path} failed: {error}"
            else:
                if response.is_success:
                    return _json_object(response, method=method, path=path)
                classification = classify_agent_failure(
                    status_code=response.status_code,
                    body=response.text,
                )
                detail = (
                    f"{method} {path} returned HTTP {response.status_code}: "
                    f"{sanitize_summary(response.text, max_chars=200) or '<empty body>'}"
                )
                if not classification.transient:
                    logger.error("Agent API rejected request: %s", classification.to_details())
                    raise AgentFailure(detail, status_code=response.status_code)

            if attempt >= self.max_attempts:
                raise CommunicationError(
                    f"{detail} (gave up after {attempt} attempts)",
                    attempts=attempt,
                )
            delay = self._compute_retry_delay(retry_number=attempt)
            if deadline is not None:
                remaining = deadline - self._monotonic()
                if remaining <= 0:
                    raise CommunicationError(
                        f"{detail} (deadline reached after {attempt} attempts)",
                        attempts=attempt,
                    )
                delay = min(delay, remaining)
            logger.warning(
                "Transient agent API failure (%s), retry %d/%d in %.2fs",
                classification.reason_code,
                attempt,
                self.max_attempts - 1,
                delay,
            )
            self._sleep(delay)

    def _request_timeout(self, deadline: float | None) -> float:
        if deadline is None:
            return self.request_timeout_seconds
        remaining = deadline - self._monotonic()
        return max(0.001, min(self.request_timeout_seconds, remaining))

    def _compute_retry_delay(self, *, retry_number: int) -> float:
        max_delay = min(
            self.retry_max_seconds,
            self.retry_base_seconds * (2 ** max(retry_number - 1, 0)),
        )
        return self._random.uniform(0, max_delay)


def outcome_from_status(
    handle: SubmissionHandle,
    payload: dict[str, Any],
    *,
    completed_at: datetime,
) -> StageOutcome | None:
    """Map an agent status payload to a terminal outcome, or ``None`` if pending."""

    status = str(payload.get("status", "")).strip().lower()
    subtype = str(payload.get("subtype") or "")
    is_error = bool(payload.get("is_error")) or subtype.startswith("error")

    if status in SUCCEEDED_STATUSES and not is_error:
        return StageOutcome(
            stage=handle.stage,
            status=StageStatus.SUCCEEDED,
            sent_at=handle.sent_at,
            completed_at=completed_at,
            raw_response=payload,
            result_id=_optional_str(payload.get("result_id")),
            conversation_id=_optional_str(payload.get("conversation_id")) or handle.conversation_id,
        )
    if status in FAILED_STATUSES or (status in SUCCEEDED_STATUSES and is_error):
        summary = payload.get("error") or payload.get("result") or subtype or status
        return StageOutcome(
            stage=handle.stage,
            status=StageStatus.FAILED,
            sent_at=handle.sent_at,
            completed_at=completed_at,
            raw_response=payload,
            error_detail=f"/{handle.stage.command_name} reported an error: {summary}",
            failure_class=FailureClass.AGENT_FAILURE,
            conversation_id=_optional_str(payload.get("conversation_id")) or handle.conversation_id,
        )
    return None


def _timeout_outcome(handle: SubmissionHandle, payload: dict[str, Any]) -> StageOutcome:
    logger.warning("Submission %s did not finish before timeout", handle.submission_id)
    return _failed_outcome(
        handle,
        payload,
        failure_class=FailureClass.TIMEOUT,
        error_detail=TIMEOUT_ERROR_DETAIL,
    )


def _failed_outcome(
    handle: SubmissionHandle,
    payload: dict[str, Any],
    *,
    failure_class: FailureClass,
    error_detail: str,
) -> StageOutcome:
    return StageOutcome(
        stage=handle.stage,
        status=StageStatus.FAILED,
        sent_at=handle.sent_at,
        completed_at=utc_now(),
        raw_response=payload,
        error_detail=error_detail,
        failure_class=failure_class,
        conversation_id=handle.conversation_id,
    )


def _json_object(response: httpx.Response, *, method: str, path: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as error:
        raise AgentFailure(
            f"{method} {path} returned non-JSON body.",
            status_code=response.status_code,
        ) from error
    if not isinstance(payload, dict):
        raise AgentFailure(
            f"{method} {path} returned JSON {type(payload).__name__}, expected object.",
            status_code=response.status_code,
        )
    return payload


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None
