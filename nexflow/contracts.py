"""Flow definition contracts for nexflow.

A flow is a named cron schedule plus an ordered list of typed steps. Steps
form a closed discriminated union on ``type``; the interpreter in
:mod:`nexflow.execute` handles every member explicitly.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)

from .utils.time import utc_now

logger = logging.getLogger(__name__)

Operator = Literal["=", "!=", "<", ">", "<=", ">="]
HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]
NotifyMethod = Literal["slack", "discord", "teams", "webhook"]

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def generate_flow_id(name: str) -> str:
    """Derive a flow id from its name.

    Lowercases, collapses every run of non-alphanumeric characters into a
    single ``-`` and strips leading/trailing dashes, so "Daily BTC Price!"
    becomes ``daily-btc-price``.
    """
    return _NON_ALNUM_RE.sub("-", name.lower()).strip("-")


class ConditionRule(BaseModel):
    """Compare the value at ``input`` (a dot path into results) with ``value``."""

    input: str
    operator: Operator
    value: Union[int, float, str]


class FetchStep(BaseModel):
    """Issue an HTTP request and store the response under ``id``."""

    type: Literal["fetch"] = "fetch"
    id: str = Field(min_length=1)
    url: str
    method: HttpMethod = "GET"
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None
    timeout_ms: Optional[int] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("timeout_ms", "timeout"),
    )

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class DelayStep(BaseModel):
    """Suspend the run for ``duration`` (e.g. ``500ms``, ``2s``, ``5m``, ``1h``)."""

    type: Literal["delay"] = "delay"
    duration: str


class ConditionStep(ConditionRule):
    """Stop the run (successfully) when the rule evaluates false."""

    type: Literal["condition"] = "condition"


class LogicStep(BaseModel):
    """Combine several rules with AND / OR; stops the run when false."""

    type: Literal["logic"] = "logic"
    mode: Literal["AND", "OR"] = Field(
        validation_alias=AliasChoices("mode", "logic")
    )
    conditions: List[ConditionRule] = Field(default_factory=list)

    @field_validator("mode", mode="before")
    @classmethod
    def _upper_mode(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class LogStep(BaseModel):
    """Append an interpolated message to the run log."""

    type: Literal["log"] = "log"
    message: str
    include: Optional[List[str]] = None


class NotifyStep(BaseModel):
    """POST a chat message or custom webhook payload."""

    type: Literal["notify"] = "notify"
    method: NotifyMethod
    url: str
    message: Optional[str] = None
    raw_payload: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("raw_payload", "rawPayload"),
    )
    include: Optional[List[str]] = None

    @field_validator("url")
    @classmethod
    def _ensure_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("notify url must be an absolute http(s) URL")
        return v


Step = Annotated[
    Union[FetchStep, DelayStep, ConditionStep, LogicStep, LogStep, NotifyStep],
    Field(discriminator="type"),
]


class FlowConfig(BaseModel):
    """User-authored flow definition."""

    name: str = Field(min_length=1)
    schedule: str
    enabled: bool = True
    steps: List[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_steps(self) -> "FlowConfig":
        if not generate_flow_id(self.name):
            raise ValueError(
                f"Flow name {self.name!r} must contain at least one letter or digit"
            )
        fetch_ids: set[str] = set()
        for index, step in enumerate(self.steps):
            if isinstance(step, FetchStep):
                if step.id in fetch_ids:
                    raise ValueError(
                        f'steps[{index}]: duplicate fetch id "{step.id}". '
                        "Each fetch step must have a unique id."
                    )
                fetch_ids.add(step.id)
            elif isinstance(step, NotifyStep):
                if step.method == "webhook":
                    if not step.raw_payload or not step.raw_payload.strip():
                        raise ValueError(
                            f"steps[{index}]: raw_payload is required for webhook notifications"
                        )
                elif not step.message or not step.message.strip():
                    raise ValueError(
                        f"steps[{index}]: message is required for slack, discord, "
                        "and teams notifications"
                    )
        return self

    @property
    def flow_id(self) -> str:
        return generate_flow_id(self.name)


class FlowRecord(FlowConfig):
    """A stored flow: definition plus identity and bookkeeping timestamps."""

    id: str
    created_at: datetime
    updated_at: datetime
    last_run_at: Optional[datetime] = None

    @classmethod
    def from_config(
        cls,
        config: FlowConfig,
        *,
        flow_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        last_run_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "FlowRecord":
        """Build a record for ``config``.

        Without ``flow_id`` the id is derived from the name and the record is
        treated as new (``created_at == updated_at``).
        """
        now = now or utc_now()
        return cls(
            **config.model_dump(include=set(FlowConfig.model_fields)),
            id=flow_id or config.flow_id,
            created_at=created_at or now,
            updated_at=now,
            last_run_at=last_run_at,
        )

    def definition(self) -> FlowConfig:
        """Snapshot of the user-authored part of this record."""
        return FlowConfig(
            name=self.name,
            schedule=self.schedule,
            enabled=self.enabled,
            steps=list(self.steps),
        )


class ExecutionContext(BaseModel):
    """Mutable state for a single run, shared by its steps in order.

    ``results`` maps fetch step ids to captured responses; ``log_lines``
    collects the human-readable run log. One instance per run, discarded
    when the run record has been built.
    """

    results: Dict[str, Any] = Field(default_factory=dict)
    log_lines: List[str] = Field(default_factory=list)

    def log(self, line: str) -> None:
        logger.debug(line)
        self.log_lines.append(line)
