"""Helpers for reading flow definition files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from ..contracts import FlowConfig

FLOW_FILE_SUFFIXES = {".yaml", ".yml", ".json"}


def read_flow_document(path: Path) -> dict[str, Any]:
    """Parse a YAML or JSON flow document into a plain mapping."""

    suffix = path.suffix.lower()
    if suffix not in FLOW_FILE_SUFFIXES:
        raise ValueError(
            f"Unsupported flow file type '{suffix}'; expected one of "
            + ", ".join(sorted(FLOW_FILE_SUFFIXES))
        )
    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if suffix == ".json" else yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a flow mapping")
    return data


def load_flow_file(path: Path) -> FlowConfig:
    """Read and validate a flow definition file."""

    return FlowConfig.model_validate(read_flow_document(path))


def format_timestamp(value: Any) -> str:
    return value.isoformat() if value is not None else "never"
