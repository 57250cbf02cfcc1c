"""Voicemail template rendering: spin syntax and lead variable substitution."""

import random
import re
from collections.abc import Mapping

SPIN_PATTERN = re.compile(r"\{([^{}]*\|[^{}]*)\}")
DOUBLE_BRACE_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")
SINGLE_BRACE_PATTERN = re.compile(r"\{(\w+)\}")
_SNAKE_TAIL = re.compile(r"_([a-z])")


def spin(text: str, rng: random.Random | None = None) -> str:
    """
    Replace every ``{a|b|c}`` group with one option picked uniformly at random.

    Only groups containing a pipe are spun, so ``{firstName}`` and
    ``{{firstName}}`` pass through untouched.
    """
    if not text:
        return text
    chooser = rng or random

    def _pick(match: re.Match[str]) -> str:
        options = [option.strip() for option in match.group(1).split("|")]
        options = [option for option in options if option]
        if not options:
            return ""
        return chooser.choice(options)

    return SPIN_PATTERN.sub(_pick, text)


def _to_camel(key: str) -> str:
    return _SNAKE_TAIL.sub(lambda m: m.group(1).upper(), key)


def substitute_variables(text: str, values: Mapping[str, str] | None) -> str:
    """
    Fill ``{{var}}`` and ``{var}`` tokens from lead values.

    ``first_name``/``last_name`` resolve like ``firstName``/``lastName``.
    Unknown ``{{var}}`` become empty; unknown ``{var}`` stay as literal text.
    """
    if not text or values is None:
        return text

    known: dict[str, str] = dict(values)
    if "firstName" in values:
        known["first_name"] = values["firstName"]
    if "lastName" in values:
        known["last_name"] = values["lastName"]

    def _value(key: str) -> str:
        value = known.get(key)
        if value is None:
            value = known.get(_to_camel(key))
        return "" if value is None else str(value)

    out = DOUBLE_BRACE_PATTERN.sub(lambda m: _value(m.group(1)), text)
    return SINGLE_BRACE_PATTERN.sub(
        lambda m: _value(m.group(1)) if m.group(1) in known else m.group(0),
        out,
    )


def render_voicemail(
    template: str, values: Mapping[str, str], rng: random.Random | None = None
) -> str:
    """Spin first, then substitute variables."""
    return substitute_variables(spin(template, rng), values)


def should_leave_voicemail(call_count: int, leave: int, cycle: int) -> bool:
    """Leave a voicemail on ``leave`` out of every ``cycle`` calls (``count mod cycle < leave``)."""
    if leave <= 0 or cycle < 1:
        return False
    return call_count % cycle < leave
