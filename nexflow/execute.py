"""Step interpreter for nexflow runs."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import operator as op
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import httpx
from pydantic import BaseModel, Field

from .constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from .contracts import (
    ConditionRule,
    ConditionStep,
    DelayStep,
    ExecutionContext,
    FetchStep,
    LogicStep,
    LogStep,
    NotifyStep,
    Step,
)
from .errors import (
    DurationFormatError,
    NotifyError,
    StepTimeoutError,
    WebhookPayloadError,
)
from .persistence.models import StepOutcome
from .template import get_deep_value, interpolate, interpolate_json_payload, to_json, to_text

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"(\d+)(ms|s|m|h)")
_UNIT_MS = {"ms": 1, "s": 1_000, "m": 60_000, "h": 3_600_000}

_ORDERINGS: Dict[str, Callable[[Any, Any], bool]] = {
    "<": op.lt,
    ">": op.gt,
    "<=": op.le,
    ">=": op.ge,
}


class ExecutionOutcome(BaseModel):
    """Result of interpreting a step list."""

    success: bool
    outcomes: List[StepOutcome] = Field(default_factory=list)


def parse_duration(duration: str) -> int:
    """Convert ``<integer><ms|s|m|h>`` to milliseconds.

    Raises:
        DurationFormatError: For any other format.
    """
    match = _DURATION_RE.fullmatch(duration.strip())
    if not match:
        raise DurationFormatError(duration)
    return int(match.group(1)) * _UNIT_MS[match.group(2)]


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def evaluate_rule(rule: ConditionRule, results: Mapping[str, Any]) -> bool:
    """Evaluate one comparison against the run results.

    When both sides parse as numbers the comparison is numeric, otherwise it
    compares text. ``=`` and ``!=`` are loose across the number/string
    boundary, so ``"5" = 5`` holds.
    """
    value = get_deep_value(results, rule.input)
    target = rule.value
    num_value = _to_number(value)
    num_target = _to_number(target)
    numeric = num_value is not None and num_target is not None

    if rule.operator in ("=", "!="):
        if value is None:
            equal = False
        elif numeric:
            equal = num_value == num_target
        else:
            equal = to_text(value) == to_text(target)
        return equal if rule.operator == "=" else not equal

    compare = _ORDERINGS[rule.operator]
    if numeric:
        return compare(num_value, num_target)
    left = "" if value is None else to_text(value)
    return compare(left, to_text(target))


def _included_values(
    include: Optional[List[str]], results: Mapping[str, Any]
) -> Dict[str, Any]:
    return {key: get_deep_value(results, key) for key in include or []}


def _with_included(
    message: str, include: Optional[List[str]], results: Mapping[str, Any]
) -> str:
    included = _included_values(include, results)
    if not included:
        return message
    return f"{message} {to_json(included)}"


class StepExecutor:
    """Executes a flow's steps strictly in order against one context.

    Fetch and notify steps share an ``httpx.AsyncClient``: either the one
    passed in (owned by the caller) or a client opened for the duration of a
    single :meth:`execute` call.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._timeout = timeout

    async def execute(
        self, steps: Sequence[Step], context: ExecutionContext
    ) -> ExecutionOutcome:
        """Run ``steps`` and report per-step outcomes.

        Execution stops at the first failing step (``success=False``) or at
        the first condition/logic step that evaluates false, which is a
        deliberate short-circuit and still reports ``success=True``.
        """
        if self._client is not None:
            return await self._run_steps(steps, context, self._client)
        async with httpx.AsyncClient(
            timeout=self._timeout, follow_redirects=True
        ) as client:
            return await self._run_steps(steps, context, client)

    async def _run_steps(
        self,
        steps: Sequence[Step],
        context: ExecutionContext,
        client: httpx.AsyncClient,
    ) -> ExecutionOutcome:
        outcomes: List[StepOutcome] = []

        for step in steps:
            step_id = step.id if isinstance(step, FetchStep) else step.type
            try:
                if isinstance(step, FetchStep):
                    output: Any = await self._execute_fetch(step, context, client)
                    context.results[step.id] = output
                elif isinstance(step, ConditionStep):
                    output = self._execute_condition(step, context)
                elif isinstance(step, LogicStep):
                    output = self._execute_logic(step, context)
                elif isinstance(step, DelayStep):
                    output = await self._execute_delay(step)
                elif isinstance(step, LogStep):
                    output = self._execute_log(step, context)
                elif isinstance(step, NotifyStep):
                    output = await self._execute_notify(step, context, client)
                else:
                    raise TypeError(f"Unsupported step type: {step!r}")
            except Exception as e:
                message = str(e) or e.__class__.__name__
                context.log(f"[{step.type}] Error: {message}")
                outcomes.append(StepOutcome(step_id=step_id, error=message))
                logger.warning(f"Step {step_id} failed: {message}")
                return ExecutionOutcome(success=False, outcomes=outcomes)

            outcomes.append(StepOutcome(step_id=step_id, output=output))

            if isinstance(step, ConditionStep) and not output:
                context.log(
                    f"[condition:{step.input}] Evaluated false, stopping execution."
                )
                return ExecutionOutcome(success=True, outcomes=outcomes)
            if isinstance(step, LogicStep) and not output:
                context.log("[logic] Evaluated false, stopping execution.")
                return ExecutionOutcome(success=True, outcomes=outcomes)

        return ExecutionOutcome(success=True, outcomes=outcomes)

    # ------------------------------------------------------------------
    async def _execute_fetch(
        self, step: FetchStep, context: ExecutionContext, client: httpx.AsyncClient
    ) -> Dict[str, Any]:
        headers = dict(step.headers or {})
        if step.body and not any(k.lower() == "content-type" for k in headers):
            if step.body.strip().startswith(("{", "[")):
                headers["Content-Type"] = "application/json"

        if step.timeout_ms:
            # the step timeout replaces the client-wide one for this request
            seconds = step.timeout_ms / 1000
            request = client.request(
                step.method,
                step.url,
                headers=headers,
                content=step.body,
                timeout=seconds,
            )
        else:
            seconds = None
            request = client.request(
                step.method, step.url, headers=headers, content=step.body
            )
        try:
            response = await asyncio.wait_for(request, seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            if step.timeout_ms:
                raise StepTimeoutError(step.timeout_ms) from e
            raise

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        context.log(
            f"[fetch:{step.id}] {step.method} {step.url} -> {response.status_code}"
        )
        # non-2xx responses are data, not failures
        return {
            "status": response.status_code,
            "headers": {k.lower(): v for k, v in response.headers.items()},
            "body": body,
        }

    def _execute_condition(self, step: ConditionStep, context: ExecutionContext) -> bool:
        result = evaluate_rule(step, context.results)
        context.log(
            f"[condition] {step.input} {step.operator} {step.value} -> {to_text(result)}"
        )
        return result

    def _execute_logic(self, step: LogicStep, context: ExecutionContext) -> bool:
        evaluations = [evaluate_rule(rule, context.results) for rule in step.conditions]
        result = all(evaluations) if step.mode == "AND" else any(evaluations)
        context.log(
            f"[logic] {len(step.conditions)} conditions ({step.mode}) -> {to_text(result)}"
        )
        return result

    async def _execute_delay(self, step: DelayStep) -> bool:
        milliseconds = parse_duration(step.duration)
        await asyncio.sleep(milliseconds / 1000)
        return True

    def _execute_log(self, step: LogStep, context: ExecutionContext) -> bool:
        message = interpolate(step.message, context.results)
        context.log(f"[log] {_with_included(message, step.include, context.results)}")
        return True

    async def _execute_notify(
        self, step: NotifyStep, context: ExecutionContext, client: httpx.AsyncClient
    ) -> bool:
        message = interpolate(step.message, context.results)

        if step.method in ("slack", "teams"):
            payload: Any = {"text": _with_included(message, step.include, context.results)}
        elif step.method == "discord":
            payload = {"content": _with_included(message, step.include, context.results)}
        elif step.raw_payload:
            raw = interpolate_json_payload(step.raw_payload, context.results)
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as e:
                raise WebhookPayloadError(str(e)) from e
        else:
            payload = {"message": message}

        response = await client.post(step.url, json=payload)
        context.log(f"[notify:{step.method}] status={response.status_code}")
        if not response.is_success:
            raise NotifyError(response.status_code, response.text)
        return True
