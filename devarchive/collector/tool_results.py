"""Load tool-result side files that accompany session transcripts."""
from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any

from devarchive.collector.probe import read_text
from devarchive.models import ToolResultPayload

logger = logging.getLogger("devarchive.collector")


def _is_base64_image(value: Any) -> bool:
    if not isinstance(value, dict) or value.get("type") != "image":
        return False
    source = value.get("source")
    return (
        isinstance(source, dict)
        and source.get("type") == "base64"
        and isinstance(source.get("data"), str)
        and isinstance(source.get("media_type"), str)
    )


def classify_tool_result(tool_use_id: str, raw: dict[str, Any]) -> ToolResultPayload:
    tool_name = raw.get("toolName")
    result = raw.get("result")
    common = {
        "toolUseId": tool_use_id,
        "toolName": tool_name if isinstance(tool_name, str) and tool_name else "unknown",
        "isError": raw.get("isError") is True,
    }

    if isinstance(result, str):
        return ToolResultPayload(
            contentType="text/plain",
            contentText=result,
            sizeBytes=len(result.encode("utf-8")),
            **common,
        )

    if _is_base64_image(result):
        source = result["source"]
        data = source["data"]
        return ToolResultPayload(
            contentType=source["media_type"],
            contentBinary=data,
            sizeBytes=math.ceil(len(data) * 3 / 4),
            **common,
        )

    text = json.dumps(result, separators=(",", ":"), ensure_ascii=False)
    return ToolResultPayload(
        contentType="application/json",
        contentText=text,
        sizeBytes=len(text.encode("utf-8")),
        **common,
    )


def load_tool_result(tool_results_dir: Path, tool_use_id: str) -> ToolResultPayload | None:
    """Read ``<tool_results_dir>/<tool_use_id>.json``; None when missing or malformed."""
    probe = read_text(tool_results_dir / f"{tool_use_id}.json")
    if not probe.is_found or probe.value is None:
        return None
    try:
        raw = json.loads(probe.value)
    except json.JSONDecodeError:
        logger.debug("Malformed tool result %s in %s", tool_use_id, tool_results_dir)
        return None
    if not isinstance(raw, dict):
        return None
    return classify_tool_result(tool_use_id, raw)
