from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable

SNIPPET_CHARS = 500

_FENCE_PATTERN = re.compile(r"```[ \t]*(?:json)?[ \t]*\n?(.*?)```", flags=re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


@dataclass(frozen=True)
class Extracted:
    value: Any


@dataclass(frozen=True)
class ParseError:
    reason: str
    snippet: str


ExtractionResult = Extracted | ParseError

_MISSING = object()


def _try_parse(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return _MISSING


def _fenced_blocks(text: str) -> list[str]:
    blocks = [match.group(1) for match in _FENCE_PATTERN.finditer(text)]
    first = text.find("```")
    last = text.rfind("```")
    if first != -1 and last > first:
        # Fences nested inside JSON strings split the lazy match; the outermost pair does not.
        outer = text[first + 3 : last]
        outer = re.sub(r"^[ \t]*json[ \t]*\n?", "", outer, flags=re.IGNORECASE)
        blocks.append(outer)
    return blocks


def _iter_json_candidates(text: str) -> list[str]:
    candidates = [block.strip() for block in _fenced_blocks(text)]
    for match in re.finditer(r"[\[{]", text):
        candidates.append(text[match.start() :])
    return candidates


def _raw_decode(candidate: str) -> Any:
    decoder = json.JSONDecoder()
    try:
        parsed, _ = decoder.raw_decode(candidate.lstrip())
    except json.JSONDecodeError:
        return _MISSING
    return parsed


def _is_structured(value: Any) -> bool:
    # Citation markers such as "[1]" decode as lists of scalars.
    if isinstance(value, dict):
        return True
    return isinstance(value, list) and any(isinstance(item, (dict, list)) for item in value)


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


def _snippet(text: str) -> str:
    return text[:SNIPPET_CHARS]


def _first_accepted(candidates: list[str], parse: Callable[[str], Any], accept: Callable[[Any], bool]) -> Any:
    fallback = _MISSING
    for candidate in candidates:
        parsed = parse(candidate)
        if parsed is _MISSING:
            continue
        if accept(parsed):
            return parsed
        if fallback is _MISSING:
            fallback = parsed
    return fallback


def _extract(text: str | None, accept: Callable[[Any], bool]) -> ExtractionResult:
    if text is None or not str(text).strip():
        return ParseError(reason="empty response", snippet="")
    raw = str(text)

    parsed = _try_parse(raw.strip())
    if parsed is not _MISSING:
        return Extracted(parsed)

    candidates = _iter_json_candidates(raw)
    repaired = [fixed for fixed in (_TRAILING_COMMA.sub(r"\1", candidate) for candidate in candidates) if fixed not in candidates]
    fallback = _MISSING
    for pool, parse in ((candidates, _try_parse), (candidates, _raw_decode), (repaired, _raw_decode)):
        parsed = _first_accepted(pool, parse, accept)
        if parsed is not _MISSING and accept(parsed):
            return Extracted(parsed)
        if fallback is _MISSING:
            fallback = parsed
    if fallback is not _MISSING:
        return Extracted(fallback)

    if candidates:
        return ParseError(reason="malformed or truncated JSON", snippet=_snippet(raw))
    return ParseError(reason="no JSON found in response", snippet=_snippet(raw))


def extract_json(text: str | None) -> ExtractionResult:
    """Pull the first JSON value out of model output, preferring objects and lists of records; never raises."""
    return _extract(text, _is_structured)


def extract_object(text: str | None) -> ExtractionResult:
    result = _extract(text, _is_object)
    if isinstance(result, ParseError):
        return result
    if not isinstance(result.value, dict):
        return ParseError(
            reason=f"expected a JSON object, got {type(result.value).__name__}",
            snippet=_snippet(str(text)),
        )
    return result
