from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Any

from focusquest.errors import InvalidRule
from focusquest.time_utils import as_utc_wallclock, sunday_weekday, utc_midnight, yesterday_midnight

DAILY_SEARCH_STEPS = 3650
WEEKLY_SEARCH_DAYS = 7 * 8

WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
COUNT_PATTERN = re.compile(r"^x(?P<count>\d+)$")


@dataclass(frozen=True)
class OneTime:
    max_occurrences: int | None = None


@dataclass(frozen=True)
class Daily:
    interval: int = 1
    max_occurrences: int | None = None


@dataclass(frozen=True)
class EveryNDays:
    interval: int = 1
    max_occurrences: int | None = None


@dataclass(frozen=True)
class Weekly:
    weekdays: frozenset[int] = field(default_factory=frozenset)
    max_occurrences: int | None = None


RecurrenceRule = OneTime | Daily | EveryNDays | Weekly


@dataclass(frozen=True)
class ParsedRule:
    rule: RecurrenceRule
    one_time_date: date | None
    rest: list[str]


def compute_next_due(
    rule: RecurrenceRule | None,
    after: datetime,
    completed_count: int = 0,
) -> datetime | None:
    """Next occurrence strictly after ``after``, or None when the rule is exhausted.

    Results are day starts expressed as UTC midnight of the calendar date.
    An aware ``after`` is compared by its wall clock, so "strictly after" holds
    in that frame only. West of UTC a late-evening anchor can therefore get a
    result that is earlier as an absolute instant. Callers that need the
    absolute ordering pass UTC anchors.
    """
    if rule is None or isinstance(rule, OneTime):
        return None

    max_count = rule.max_occurrences
    if max_count is not None and max_count > 0 and completed_count >= max_count:
        return None

    anchor = as_utc_wallclock(after)
    anchor_day = utc_midnight(anchor.date())

    if isinstance(rule, (Daily, EveryNDays)):
        interval = max(1, rule.interval or 1)
        # First candidate is one full interval after the anchor's day.
        day0 = anchor_day + timedelta(days=interval)
        for k in range(DAILY_SEARCH_STEPS):
            candidate = day0 + timedelta(days=k * interval)
            if candidate > anchor:
                return candidate
        return None

    day0 = anchor_day + timedelta(days=1)
    if isinstance(rule, Weekly):
        if not rule.weekdays:
            return None
        for offset in range(WEEKLY_SEARCH_DAYS):
            candidate = day0 + timedelta(days=offset)
            if sunday_weekday(candidate.date()) in rule.weekdays and candidate > anchor:
                return candidate
        return None

    return None


def is_due_on_date(next_due: datetime | None, day: date) -> bool:
    if next_due is None:
        return False
    return next_due.date() == day


def initial_due(rule: RecurrenceRule | None, today: date, one_time_date: date | None = None) -> datetime | None:
    if rule is None or isinstance(rule, OneTime):
        return utc_midnight(one_time_date or today)
    if isinstance(rule, (Daily, EveryNDays)):
        return utc_midnight(today)
    # Anchor on yesterday so a weekday matching today is due today.
    return compute_next_due(rule, yesterday_midnight(today), 0)


def validate_rule(rule: RecurrenceRule | None) -> None:
    if rule is None:
        return
    if rule.max_occurrences is not None and rule.max_occurrences <= 0:
        raise InvalidRule("Repeat count must be a positive number")
    if isinstance(rule, (Daily, EveryNDays)):
        if rule.interval < 1:
            raise InvalidRule("Interval must be at least 1 day")
    elif isinstance(rule, Weekly):
        if not rule.weekdays:
            raise InvalidRule("Weekly rule needs at least one weekday")
        if any(d < 0 or d > 6 for d in rule.weekdays):
            raise InvalidRule("Weekdays must be between 0 (Sunday) and 6 (Saturday)")


def rule_to_json(rule: RecurrenceRule) -> dict[str, Any]:
    if isinstance(rule, OneTime):
        payload: dict[str, Any] = {"type": "one-time"}
    elif isinstance(rule, Daily):
        payload = {"type": "daily", "interval": rule.interval}
    elif isinstance(rule, EveryNDays):
        payload = {"type": "every_n_days", "interval": rule.interval}
    else:
        payload = {"type": "weekly", "byweekday": sorted(rule.weekdays)}
    if rule.max_occurrences is not None:
        payload["count"] = rule.max_occurrences
    return payload


def _int_field(data: dict[str, Any], key: str, default: int | None) -> int | None:
    raw = data.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise InvalidRule(f"'{key}' must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidRule(f"'{key}' must be an integer") from exc


def rule_from_json(data: dict[str, Any] | None) -> RecurrenceRule | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise InvalidRule("Recurrence must be an object")
    kind = data.get("type")
    count = _int_field(data, "count", None)
    if kind == "one-time":
        return OneTime(max_occurrences=count)
    if kind == "daily":
        return Daily(interval=_int_field(data, "interval", 1), max_occurrences=count)
    if kind == "every_n_days":
        return EveryNDays(interval=_int_field(data, "interval", 1), max_occurrences=count)
    if kind == "weekly":
        raw_days = data.get("byweekday") or []
        if not isinstance(raw_days, list):
            raise InvalidRule("'byweekday' must be a list")
        try:
            days = frozenset(int(d) for d in raw_days)
        except (TypeError, ValueError) as exc:
            raise InvalidRule("'byweekday' must contain integers") from exc
        return Weekly(weekdays=days, max_occurrences=count)
    raise InvalidRule(f"Unknown recurrence type: {kind!r}")


def _parse_weekdays(raw: str) -> frozenset[int]:
    days: set[int] = set()
    for part in raw.split(","):
        token = part.strip().lower()
        if not token:
            continue
        if token.isdigit():
            days.add(int(token))
            continue
        short = token[:3]
        if short not in WEEKDAY_NAMES:
            raise InvalidRule(f"Unknown weekday: {part}")
        days.add(WEEKDAY_NAMES.index(short))
    return frozenset(days)


def _parse_interval(raw: str) -> int:
    if not raw.isdigit():
        raise InvalidRule(f"Interval must be a number, got {raw!r}")
    return int(raw)


def parse_rule_args(tokens: list[str]) -> ParsedRule:
    """Parse the compact bot syntax: ``once[:YYYY-MM-DD]``, ``daily[:N]``,
    ``every:N``, ``weekly:mon,wed``, optionally followed by ``xN``.
    """
    if not tokens:
        raise InvalidRule("Recurrence is required: once, daily, every:N or weekly:mon,wed")

    head, _, value = tokens[0].lower().partition(":")
    one_time_date: date | None = None

    if head == "once":
        if value:
            try:
                one_time_date = date.fromisoformat(value)
            except ValueError as exc:
                raise InvalidRule("Use once:YYYY-MM-DD for a dated one-time task") from exc
        rule: RecurrenceRule = OneTime()
    elif head == "daily":
        rule = Daily(interval=_parse_interval(value) if value else 1)
    elif head == "every":
        if not value:
            raise InvalidRule("Use every:N, for example every:3")
        rule = EveryNDays(interval=_parse_interval(value))
    elif head == "weekly":
        rule = Weekly(weekdays=_parse_weekdays(value))
    else:
        raise InvalidRule(f"Unknown recurrence: {tokens[0]}")

    rest = tokens[1:]
    if rest:
        match = COUNT_PATTERN.fullmatch(rest[0].lower())
        if match:
            count = int(match.group("count"))
            rule = replace(rule, max_occurrences=count)
            rest = rest[1:]

    validate_rule(rule)
    return ParsedRule(rule=rule, one_time_date=one_time_date, rest=rest)


def describe_rule(rule: RecurrenceRule | None) -> str:
    if rule is None or isinstance(rule, OneTime):
        text = "one-time"
    elif isinstance(rule, Daily):
        text = "daily" if rule.interval == 1 else f"every {rule.interval} days"
    elif isinstance(rule, EveryNDays):
        text = f"every {rule.interval} days"
    else:
        names = ", ".join(WEEKDAY_NAMES[d].capitalize() for d in sorted(rule.weekdays))
        text = f"weekly ({names})"
    if rule is not None and rule.max_occurrences is not None:
        text += f", {rule.max_occurrences}x"
    return text
