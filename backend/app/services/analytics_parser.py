"""Lead analytics parsing for the provider's data-collection string.

The analysis value is produced by an LLM and arrives in several dialects:
strict JSON, Python ``repr`` dicts, or fully unquoted ``{key: value}`` text
whose string values can contain commas. ``parse_analytics`` tries four
progressively more tolerant strategies and always returns a record.
"""

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.schemas.analytics import (
    UNKNOWN_LEVEL,
    CategoryScore,
    CtaFlags,
    LeadExtraction,
    ParsedAnalytics,
)
from app.utils.logging import get_logger

logger = get_logger("webhooks.analytics_parser")

IST_OFFSET_MINUTES = 330
SCORE_CAP = 9
MIN_TURNS_FOR_FULL_SCORE = 3

_PY_LITERALS = (
    (re.compile(r"\bNone\b"), "null"),
    (re.compile(r"\bTrue\b"), "true"),
    (re.compile(r"\bFalse\b"), "false"),
)
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)")
_SINGLE_QUOTED_KEY = re.compile(r"([{,]\s*)'([A-Za-z_][A-Za-z0-9_ ]*)'(\s*:)")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_WHITESPACE = " \t\r\n"

_CATEGORY_KEYS: Dict[str, Tuple[str, str]] = {
    "intent": ("intent_level", "intent_score"),
    "urgency": ("urgency_level", "urgency_score"),
    "budget": ("budget_constraint", "budget_score"),
    "fit": ("fit_alignment", "fit_score"),
    "engagement": ("engagement_health", "engagement_score"),
}
_CTA_KEYS: Dict[str, str] = {
    "pricing": "cta_pricing_clicked",
    "demo": "cta_demo_clicked",
    "followup": "cta_followup_clicked",
    "sample": "cta_sample_clicked",
    "escalated": "cta_escalated_to_human",
    "website": "cta_website_clicked",
}
_TRUTHY = {"yes", "y", "true", "1", "clicked"}
_PLACEHOLDERS = {"", "unknown", "null", "none", "n/a", "na", "unknown@example.com"}
_STATUS_TAGS = {"cold": "Cold", "warm": "Warm", "hot": "Hot"}

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TRAILING_Z = re.compile(r"[zZ]$")
_HUMAN_DATETIME_FORMATS = (
    "%b %d, %Y %I:%M %p",
    "%B %d, %Y %I:%M %p",
    "%Y-%m-%d %I:%M %p",
    "%d/%m/%Y %H:%M",
    "%Y/%m/%d %H:%M",
)


# ---------------------------------------------------------------------------
# Tier 3: tolerant converter
# ---------------------------------------------------------------------------


def _skip_ws(s: str, idx: int) -> int:
    while idx < len(s) and s[idx] in _WHITESPACE:
        idx += 1
    return idx


def _double_quoted_end(s: str, start: int) -> int:
    """Index just past the double-quoted string opening at ``start``."""
    k = start + 1
    while k < len(s):
        if s[k] == "\\":
            k += 2
            continue
        if s[k] == '"':
            return k + 1
        k += 1
    return len(s)


def _single_quoted_end(s: str, start: int) -> Optional[int]:
    # Apostrophes inside the text are allowed; the closing quote is the one
    # followed by a delimiter.
    k = start + 1
    while k < len(s):
        if s[k] == "\\":
            k += 2
            continue
        if s[k] == "'":
            nxt = _skip_ws(s, k + 1)
            if nxt >= len(s) or s[nxt] in ",}]":
                return k + 1
        k += 1
    return None


def _matching_close(s: str, start: int) -> int:
    """Index just past the bracket that balances the one at ``start``."""
    open_ch = s[start]
    close_ch = "}" if open_ch == "{" else "]"
    balance = 0
    k = start
    while k < len(s):
        c = s[k]
        if c == '"':
            k = _double_quoted_end(s, k)
            continue
        if c == open_ch:
            balance += 1
        elif c == close_ch:
            balance -= 1
            if balance == 0:
                return k + 1
        k += 1
    return len(s)


def _emit_scalar(raw: str) -> str:
    value = raw.strip()
    lowered = value.lower()
    if _NUMBER.fullmatch(value):
        return value
    if lowered in ("true", "false", "null"):
        return lowered
    return json.dumps(value, ensure_ascii=False)


class TolerantDictConverter:
    """Rewrites unquoted, dict-like text into strict JSON text.

    A bare value runs until the ``}`` closing its object, or until a comma
    that is followed by a ``"key":`` pattern. Any other comma belongs to the
    value, so sentence-like values survive intact.
    """

    def __init__(self, text: str):
        self.source = text

    def convert(self) -> str:
        return self._convert_segment(self._prepare(self.source))

    @staticmethod
    def _prepare(text: str) -> str:
        s = text.strip()
        for pattern, replacement in _PY_LITERALS:
            s = pattern.sub(replacement, s)
        s = _SINGLE_QUOTED_KEY.sub(r'\1"\2"\3', s)
        return _BARE_KEY.sub(r'\1"\2"\3', s)

    def _convert_segment(self, segment: str) -> str:
        if segment.startswith("["):
            return self._convert_array(segment)
        return self._convert_object(segment)

    @staticmethod
    def _key_follows(s: str, idx: int) -> bool:
        idx = _skip_ws(s, idx)
        if idx >= len(s) or s[idx] != '"':
            return False
        after = _skip_ws(s, _double_quoted_end(s, idx))
        return after < len(s) and s[after] == ":"

    def _bare_value_end(self, s: str, start: int) -> int:
        depth = 0
        k = start
        while k < len(s):
            c = s[k]
            if c == "{":
                depth += 1
            elif c == "}":
                if depth == 0:
                    break
                depth -= 1
            elif c == "," and depth == 0 and self._key_follows(s, k + 1):
                break
            k += 1
        return k

    def _convert_value(self, s: str, start: int) -> Tuple[str, int]:
        """Convert the value starting at ``start``; return (json_text, next_index)."""
        ch = s[start]
        if ch == '"':
            end = _double_quoted_end(s, start)
            return s[start:end], end
        if ch == "'":
            end = _single_quoted_end(s, start)
            if end is not None:
                return json.dumps(s[start + 1:end - 1], ensure_ascii=False), end
        if ch in "{[":
            end = _matching_close(s, start)
            return self._convert_segment(s[start:end]), end
        end = self._bare_value_end(s, start)
        return _emit_scalar(s[start:end].rstrip()), end

    def _convert_object(self, s: str) -> str:
        out: List[str] = []
        i = 0
        n = len(s)
        while i < n:
            ch = s[i]
            if ch == '"':
                end = _double_quoted_end(s, i)
                out.append(s[i:end])
                i = end
                continue
            if ch == ":":
                out.append(ch)
                j = _skip_ws(s, i + 1)
                out.append(s[i + 1:j])
                if j >= n:
                    break
                text, i = self._convert_value(s, j)
                out.append(text)
                continue
            out.append(ch)
            i += 1
        return "".join(out)

    def _split_top_level(self, inner: str) -> List[str]:
        parts: List[str] = []
        depth = 0
        start = 0
        k = 0
        while k < len(inner):
            c = inner[k]
            if c == '"':
                k = _double_quoted_end(inner, k)
                continue
            if c in "{[":
                depth += 1
            elif c in "}]":
                depth -= 1
            elif c == "," and depth == 0:
                parts.append(inner[start:k])
                start = k + 1
            k += 1
        parts.append(inner[start:])
        return parts

    def _convert_array(self, s: str) -> str:
        inner = s[1:-1] if s.endswith("]") else s[1:]
        items: List[str] = []
        for element in self._split_top_level(inner):
            element = element.strip()
            if not element:
                continue
            if element[0] in "{[":
                items.append(self._convert_segment(element))
            elif element[0] == '"' and element.endswith('"') and len(element) > 1:
                items.append(element)
            elif element[0] == "'" and element.endswith("'") and len(element) > 1:
                items.append(json.dumps(element[1:-1], ensure_ascii=False))
            else:
                items.append(_emit_scalar(element))
        return "[" + ", ".join(items) + "]"


def convert_unquoted_dict(text: str) -> Dict[str, Any]:
    """Parse ``{key: value, ...}`` text; raises ``ValueError`` when it cannot."""
    converted = TolerantDictConverter(text).convert()
    data = json.loads(converted)
    if not isinstance(data, dict):
        raise ValueError(f"Converted analysis is a {type(data).__name__}, not an object")
    return data


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


def _load_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _tier_strict_json(text: str) -> Optional[Dict[str, Any]]:
    return _load_object(text)


def _tier_quote_swap(text: str) -> Optional[Dict[str, Any]]:
    return _load_object(text.replace("'", '"'))


def _tier_tolerant(text: str) -> Optional[Dict[str, Any]]:
    try:
        return convert_unquoted_dict(text)
    except (ValueError, IndexError) as e:
        logger.debug("analytics_tolerant_conversion_failed", error=str(e))
        return None


_TIERS: Tuple[Tuple[int, Callable[[str], Optional[Dict[str, Any]]]], ...] = (
    (1, _tier_strict_json),
    (2, _tier_quote_swap),
    (3, _tier_tolerant),
)


# ---------------------------------------------------------------------------
# Record building
# ---------------------------------------------------------------------------


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None


def _coerce_score(value: Any) -> int:
    score = _to_int(value)
    if score is None or score <= 0:
        return 0
    return min(score, 3)


def _coerce_level(value: Any) -> str:
    if value is None:
        return UNKNOWN_LEVEL
    text = str(value).strip()
    return text or UNKNOWN_LEVEL


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


def _clean_extracted(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _PLACEHOLDERS:
        return None
    return text


def lead_status_for(total_score: int, reported: Any = None) -> str:
    if 12 <= total_score <= 15:
        return "Hot"
    if 9 <= total_score <= 11:
        return "Warm"
    if 5 <= total_score <= 8:
        return "Cold"
    if isinstance(reported, str):
        return _STATUS_TAGS.get(reported.strip().lower(), "Raw")
    return "Raw"


def normalize_demo_datetime(
    value: Any, offset_minutes: int = IST_OFFSET_MINUTES
) -> Optional[str]:
    """Render a booking time as ISO-8601 in the fixed lead timezone.

    Naive times are taken as already local; date-only values give ``None``.
    """
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if raw.lower() in _PLACEHOLDERS or _DATE_ONLY.match(raw):
        return None

    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(_TRAILING_Z.sub("+00:00", raw))
    except ValueError:
        for fmt in _HUMAN_DATETIME_FORMATS:
            try:
                parsed = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None

    local_tz = timezone(timedelta(minutes=offset_minutes))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=local_tz)
    else:
        parsed = parsed.astimezone(local_tz)
    return parsed.replace(microsecond=0).isoformat()


def _extraction(data: Dict[str, Any]) -> LeadExtraction:
    raw = data.get("extraction")
    if not isinstance(raw, dict):
        raw = {}
    return LeadExtraction(
        name=_clean_extracted(raw.get("name")),
        email=_clean_extracted(raw.get("email_address") or raw.get("email")),
        company_name=_clean_extracted(raw.get("company_name")),
        smart_notification=_clean_extracted(
            raw.get("smartnotification") or raw.get("smart_notification")
        ),
    )


def build_parsed_analytics(
    data: Dict[str, Any],
    tier: int,
    turn_count: Optional[int] = None,
    offset_minutes: int = IST_OFFSET_MINUTES,
) -> ParsedAnalytics:
    """Turn a decoded analysis object into a scored ``ParsedAnalytics``."""
    categories = {
        name: CategoryScore(
            level=_coerce_level(data.get(level_key)),
            score=_coerce_score(data.get(score_key)),
        )
        for name, (level_key, score_key) in _CATEGORY_KEYS.items()
    }
    category_sum = sum(category.score for category in categories.values())
    if category_sum > 0:
        total = category_sum
    else:
        total = max(0, min(_to_int(data.get("total_score")) or 0, 15))

    cta_reported = any(key in data for key in _CTA_KEYS.values())
    flags = CtaFlags(**{name: _coerce_flag(data.get(key)) for name, key in _CTA_KEYS.items()})

    too_few_turns = turn_count is not None and turn_count < MIN_TURNS_FOR_FULL_SCORE
    no_commitment_cta = cta_reported and not (flags.demo or flags.followup)
    capped = total > SCORE_CAP and (too_few_turns or no_commitment_cta)
    if capped:
        total = SCORE_CAP

    reasoning_raw = data.get("reasoning")
    reasoning = (
        {str(k): str(v) for k, v in reasoning_raw.items() if v is not None}
        if isinstance(reasoning_raw, dict)
        else {}
    )

    return ParsedAnalytics(
        **categories,
        total_score=total,
        lead_status_tag=lead_status_for(total, data.get("lead_status_tag")),
        score_capped=capped,
        cta_flags=flags,
        extraction=_extraction(data),
        reasoning=reasoning,
        demo_book_datetime=normalize_demo_datetime(
            data.get("demo_book_datetime"), offset_minutes
        ),
        parse_tier=tier,
    )


def raw_fallback(text: str) -> ParsedAnalytics:
    return ParsedAnalytics(
        total_score=0,
        lead_status_tag="Raw",
        reasoning={
            "intent": "Raw data preserved",
            "urgency": "Raw",
            "budget": "Raw",
            "fit": "Raw",
            "engagement": "Raw",
            "cta_behavior": "Raw",
        },
        parse_tier=4,
        raw_analysis_data=text,
    )


def parse_analytics(
    raw: Any,
    turn_count: Optional[int] = None,
    offset_minutes: int = IST_OFFSET_MINUTES,
) -> ParsedAnalytics:
    """Parse an analysis string into ``ParsedAnalytics``. Never raises."""
    text = raw if isinstance(raw, str) else ("" if raw is None else str(raw))
    for tier, attempt in _TIERS:
        try:
            data = attempt(text)
            if data is None:
                logger.debug("analytics_parse_tier_failed", tier=tier)
                continue
            parsed = build_parsed_analytics(data, tier, turn_count, offset_minutes)
        except Exception as e:
            logger.warning(
                "analytics_parse_tier_error",
                tier=tier,
                error=str(e),
                error_type=type(e).__name__,
            )
            continue
        logger.info(
            "analytics_parsed",
            tier=tier,
            total_score=parsed.total_score,
            lead_status=parsed.lead_status_tag,
            score_capped=parsed.score_capped,
        )
        return parsed

    logger.warning(
        "analytics_parse_fallback",
        analysis_length=len(text),
        analysis_preview=text[:200],
    )
    return raw_fallback(text)
