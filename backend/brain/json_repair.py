"""JSON recovery for Claude responses.

Claude is asked for bare JSON but routinely wraps it in markdown fences,
prefixes it with prose, leaves trailing commas, or runs out of tokens halfway
through. ``parse_model_json`` coerces such a response into a Python value:

    extract_payload -> repair_truncated (only when truncated) -> normalize_payload -> parse_payload
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from brain.errors import ExtractionFailed, ParseFailed

logger = logging.getLogger(__name__)

OBJECT = "object"
ARRAY = "array"

DELIMITERS = {OBJECT: ("{", "}"), ARRAY: ("[", "]")}
CLOSERS = {"{": "}", "[": "]"}

# Characters shown on each side of a parse error position.
CONTEXT_WINDOW = 200

_FENCE_JSON_RE = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_RE = re.compile(r"```\s*")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_PARTIAL_UNICODE_ESCAPE_RE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")


def _is_control(ch: str) -> bool:
    return ch <= "\x1f" or ch == "\x7f"


# ─── Response Extractor ──────────────────────────────────────

def strip_code_fences(text: str) -> str:
    """Remove ```json and ``` markers wherever they appear."""
    return _FENCE_RE.sub("", _FENCE_JSON_RE.sub("", text))


def extract_payload(
    text: str,
    shape: str = OBJECT,
    truncated: bool = False,
    key_hint: Optional[str] = None,
) -> str:
    """Slice the JSON payload out of a raw model response.

    The payload starts at the first opening delimiter of ``shape``. When
    ``key_hint`` is given, an opener immediately followed by that quoted key
    (e.g. ``{"resources"``) is preferred, which skips braces mentioned in any
    preamble. A complete response is cut at the last matching closer; a
    truncated one runs to the end of the text and is left for
    ``repair_truncated`` to close.

    Raises:
        ExtractionFailed: no opening delimiter was found.
    """
    if shape not in DELIMITERS:
        raise ValueError(f"Unknown payload shape: {shape!r}")
    opener, closer = DELIMITERS[shape]

    cleaned = strip_code_fences(text or "").strip()

    start = -1
    if key_hint:
        hinted = re.search(re.escape(opener) + r'\s*"' + re.escape(key_hint) + '"', cleaned)
        if hinted:
            start = hinted.start()
    if start == -1:
        start = cleaned.find(opener)
    if start == -1:
        logger.error("No %r found in model response: %s", opener, cleaned[:500])
        raise ExtractionFailed()

    if truncated:
        payload = cleaned[start:]
    else:
        end = cleaned.rfind(closer)
        if end < start:
            logger.warning("Response marked complete but has no closing %r after position %d", closer, start)
            payload = cleaned[start:]
        else:
            payload = cleaned[start:end + 1]

    logger.debug("Extracted %s payload: %d of %d chars (start=%d)", shape, len(payload), len(cleaned), start)
    return payload


# ─── Truncation Repairer ─────────────────────────────────────

def scan_structure(payload: str) -> tuple[list[str], bool, bool]:
    """Scan ``payload`` outside string literals.

    Returns ``(pending, in_string, escaped)``: the closers still owed, in
    opening order, and the string/escape state at the end of the text.
    A closer that does not match the innermost open structure is ignored.
    """
    pending: list[str] = []
    in_string = False
    escaped = False

    for ch in payload:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in CLOSERS:
            pending.append(CLOSERS[ch])
        elif ch in ("}", "]"):
            if pending and pending[-1] == ch:
                pending.pop()

    return pending, in_string, escaped


def repair_truncated(payload: str) -> str:
    """Close every structure a truncated payload left open.

    Closers are appended innermost-first, so interleaved objects and arrays
    come out balanced. A string literal cut mid-way is terminated first.
    Never raises; a partially written value may still fail to parse.
    """
    pending, in_string, escaped = scan_structure(payload)
    if not pending:
        return payload

    repaired = payload
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        partial = _PARTIAL_UNICODE_ESCAPE_RE.search(repaired)
        if partial:
            head = repaired[: partial.start() + 1]
            if (len(head) - len(head.rstrip("\\"))) % 2 == 1:
                repaired = repaired[: partial.start()]
        repaired += '"'
    else:
        repaired = repaired.rstrip()
        if repaired.endswith(","):
            repaired = repaired[:-1]
        elif repaired.endswith(":"):
            repaired += "null"

    closing = "".join(reversed(pending))
    logger.info("Repaired truncated JSON: appended %r", closing)
    return repaired + closing


# ─── Syntax Normalizer ───────────────────────────────────────

def _closes_after(text: str, index: int) -> bool:
    for ch in text[index:]:
        if ch in ("}", "]"):
            return True
        if ch == "," or ch.isspace() or _is_control(ch):
            continue
        return False
    return False


def strip_trailing_commas(text: str) -> str:
    """Drop commas followed only by whitespace (or more commas) and a closer.

    String literals are left untouched. Control characters are transparent
    to the scan, since ``strip_control_characters`` removes them next.
    """
    out: list[str] = []
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if _is_control(ch):
            out.append(ch)
            continue
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "," and _closes_after(text, i + 1):
            continue
        out.append(ch)

    return "".join(out)


def strip_control_characters(text: str) -> str:
    return _CONTROL_RE.sub("", text)


def normalize_payload(payload: str) -> str:
    """Trailing-comma cleanup, then control-character removal. Idempotent."""
    without_commas = strip_trailing_commas(payload)
    normalized = strip_control_characters(without_commas)
    logger.debug(
        "Normalized payload: removed %d trailing comma(s), %d control character(s)",
        len(payload) - len(without_commas),
        len(without_commas) - len(normalized),
    )
    return normalized


# ─── Parse ───────────────────────────────────────────────────

def error_context(text: str, position: int, window: int = CONTEXT_WINDOW) -> str:
    return text[max(0, position - window): position + window]


def parse_payload(payload: str) -> Any:
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        context = error_context(payload, exc.pos)
        logger.error("Failed to parse Claude JSON at position %d: %s\n%s", exc.pos, exc.msg, context)
        raise ParseFailed(
            f"Invalid JSON from Claude: {exc.msg} (position {exc.pos})",
            position=exc.pos,
            context=context,
        ) from exc


def parse_model_json(
    text: str,
    shape: str = OBJECT,
    truncated: bool = False,
    key_hint: Optional[str] = None,
) -> Any:
    """Run the full recovery pipeline and return the parsed value.

    ``truncated`` must come from the provider's stop reason
    (``stop_reason == "max_tokens"``); complete responses are never repaired.
    """
    payload = extract_payload(text, shape=shape, truncated=truncated, key_hint=key_hint)
    if truncated:
        payload = repair_truncated(payload)
    payload = normalize_payload(payload)
    return parse_payload(payload)
