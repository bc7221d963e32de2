"""Deterministic composition of per-stage agent commands."""

from __future__ import annotations

from collections.abc import Sequence

from eos_driver.driver.errors import ArgumentError
from eos_driver.driver.models import STAGE_ORDER, AgentCommand, Stage, StageOutcome

DRY_RUN_SPEC_PLACEHOLDER = "<spec>"


def build_command(
    stage: Stage,
    spec_text: str,
    prior_outcomes: Sequence[StageOutcome] = (),
) -> AgentCommand:
    """Build the outbound command for ``stage``.

    Spec creation embeds the spec text verbatim (double quotes escaped).
    Later stages only reference the previous stage's result id, so the
    payload does not grow with the spec.
    """

    if stage == Stage.SPEC_CREATION:
        if not spec_text or not spec_text.strip():
            raise ArgumentError("Spec text is required for /create-spec.")
        escaped = spec_text.replace('"', '\\"')
        return AgentCommand(stage=stage, prompt=f'/{stage.command_name} "{escaped}"')

    result_ref = _previous_result_id(stage, prior_outcomes)
    prompt = f"/{stage.command_name}"
    if result_ref is not None:
        prompt = f"{prompt} --from {result_ref}"
    return AgentCommand(stage=stage, prompt=prompt, result_ref=result_ref)


def plan_commands(spec_text: str | None) -> list[AgentCommand]:
    """Materialize every stage's command without prior results (dry run)."""

    text = spec_text if spec_text and spec_text.strip() else DRY_RUN_SPEC_PLACEHOLDER
    return [build_command(stage, text) for stage in STAGE_ORDER]


def _previous_result_id(stage: Stage, prior_outcomes: Sequence[StageOutcome]) -> str | None:
    previous = stage.previous()
    for outcome in reversed(prior_outcomes):
        if outcome.stage == previous:
            return outcome.result_id
    return None
