"""Lenient JSON parsing for oracle output.

오라클 응답은 코드 펜스, 앞뒤 설명문, 잘린 괄호 등을 포함할 수 있다.
엄격 파싱 → 펜스 제거/첫 객체 추출 → json_repair 순으로 시도한다.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from json_repair import repair_json


class JsonParseError(ValueError):
    """어떤 방식으로도 JSON을 복원하지 못함."""


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _extract_first_container(text: str) -> Optional[str]:
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return None
    start = min(starts)
    closing = "}" if text[start] == "{" else "]"
    end = text.rfind(closing)
    if end <= start:
        return text[start:]
    return text[start : end + 1]


def parse_json_lenient(text: str) -> Any:
    """Parse ``text`` into a JSON object/array or raise :class:`JsonParseError`."""
    if not isinstance(text, str) or not text.strip():
        raise JsonParseError("빈 응답입니다.")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    body = _strip_fences(text)
    candidate = _extract_first_container(body)
    if candidate is not None:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

    repaired = repair_json(candidate or body, return_objects=True)
    if isinstance(repaired, (dict, list)) and repaired:
        return repaired
    raise JsonParseError("JSON 복원 실패")


def normalize_root_json(value: Any) -> Optional[dict]:
    """Select the report object from a parsed root.

    배열이면 ``report_date``와 ``category_updates``를 모두 가진 첫 원소, 없으면
    첫 원소를 고른다. 객체가 아니면 ``None``.
    """
    if isinstance(value, list):
        for element in value:
            if isinstance(element, dict) and "report_date" in element and "category_updates" in element:
                return element
        value = value[0] if value else None
    return value if isinstance(value, dict) else None
