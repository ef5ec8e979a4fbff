import json
import logging
import re
from enum import StrEnum
from typing import Iterable, TypeAlias

RawValue: TypeAlias = (
    None | bool | int | float | str | list["RawValue"] | dict[str, "RawValue"]
)
RuleCandidate: TypeAlias = str | dict[str, RawValue]


class RuleType(StrEnum):
    DOMAIN_SUFFIX = "DOMAIN-SUFFIX"
    DOMAIN_KEYWORD = "DOMAIN-KEYWORD"
    IP_CIDR = "IP-CIDR"
    REGEX = "REGEX"


RE_IP_CIDR = re.compile(r"[0-9]{1,3}(?:\.[0-9]{1,3}){3}(?:/[0-9]{1,2})?")
RE_IP_RANGE = re.compile(r"[0-9]{1,3}(?:\.[0-9]{1,3}){3}-[0-9]{1,3}(?:\.[0-9]{1,3}){3}")
RE_DOMAIN = re.compile(r"(?:\*\.?)?([a-zA-Z0-9\-]+\.)+[a-zA-Z]{2,63}")
RE_ADBLOCK_ANCHOR = re.compile(r"\|\|([^/^]+)\^?")
RE_COMMENT = re.compile(r"\s*[!#]")
RE_PATTERN_CHARS = re.compile(r"[*^/?$+()\[\]{}|]")
RE_REGEX_META = re.compile(r"[.*+?^${}()|\[\]\\]")

RULE_KEYS = frozenset(
    ["rule", "type", "value", "payload", "pattern", "domain", "content", "host"]
)
MAX_RULE_KEYS = 30
CONTENT_KEYS = ("payload", "value", "content", "pattern", "domain", "host", "rule")
FALLBACK_CONTENT_KEYS = ("domain", "host", "pattern", "rule")
TYPE_KEYS = ("type", "rule_type", "kind")


def escape_regex(s: str) -> str:
    """Backslash-escape regex metacharacters; ``-``, ``#`` and spaces stay as is."""
    return RE_REGEX_META.sub(lambda m: "\\" + m.group(0), s)


def to_text(value: RawValue) -> str:
    """Render a decoded JSON value the way it reads in the source document."""
    match value:
        case None:
            return "null"
        case bool():
            return "true" if value else "false"
        case float() if value.is_integer():
            return str(int(value))
        case dict() | list():
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        case _:
            return str(value)


def _rule(type_: RuleType, content: str) -> str:
    if "\n" in content or "\r" in content:
        # only a regex can carry a line break, as an escape
        if type_ is not RuleType.REGEX:
            content = escape_regex(content)
        content = content.replace("\r", "\\r").replace("\n", "\\n")
        return f"{RuleType.REGEX},{content}"
    return f"{type_},{content}"


def _probe(entry: dict[str, RawValue], keys: Iterable[str]) -> RawValue:
    # presence, not truthiness, picks the key
    for key in keys:
        if key in entry:
            return entry[key]
    return None


def flatten(value: RawValue) -> list[RuleCandidate]:
    """Collect rule candidates from an arbitrarily nested document.

    A dict holding at least one rule key (and not too many keys overall) is a
    single candidate; any other container is walked recursively.
    """
    match value:
        case None:
            return []
        case list():
            items = []
            for element in value:
                items.extend(flatten(element))
            return items
        case dict():
            if len(value) <= MAX_RULE_KEYS and not RULE_KEYS.isdisjoint(value):
                return [value]
            items = []
            for element in value.values():
                items.extend(flatten(element))
            return items
        case _:
            return [to_text(value)]


def _classify_pattern(s: str) -> str:
    if s.startswith("||"):
        pattern = escape_regex(s[2:]).replace("\\*", ".*").replace("\\^", "")
        return _rule(RuleType.REGEX, f".*{pattern}.*")
    return _rule(RuleType.REGEX, escape_regex(s).replace("\\*", ".*"))


def classify_text(text: str) -> list[str]:
    s = text.strip()
    if not s or RE_COMMENT.match(s):
        return []
    if m := RE_ADBLOCK_ANCHOR.fullmatch(s):
        domain = m.group(1).strip().lstrip(".")
        return [_rule(RuleType.DOMAIN_SUFFIX, domain)] if domain else []
    if RE_IP_CIDR.fullmatch(s):
        return [_rule(RuleType.IP_CIDR, s)]
    rest = s[2:].lstrip(".")
    if s.startswith("+.") and rest and not RE_PATTERN_CHARS.search(rest):
        # clash rule-provider suffix form
        return [_rule(RuleType.DOMAIN_SUFFIX, rest)]
    if RE_PATTERN_CHARS.search(s):
        return [_classify_pattern(s)]
    if RE_IP_RANGE.fullmatch(s):
        # matches the literal range text only, the range is not expanded
        return [_rule(RuleType.REGEX, f"^{escape_regex(s)}$")]
    if s.startswith("."):
        return [_rule(RuleType.DOMAIN_SUFFIX, s.lstrip("."))]
    bare = s.lstrip("*.")
    if RE_DOMAIN.fullmatch(bare):
        return [_rule(RuleType.DOMAIN_SUFFIX, bare)]
    return [_rule(RuleType.REGEX, escape_regex(s))]


def _classify_hinted(hint: str, s: str) -> str | None:
    if "domain" in hint and (
        "suffix" in hint or hint == "suffix" or "domain-suffix" in hint
    ):
        return _rule(RuleType.DOMAIN_SUFFIX, s)
    if "domain" in hint and ("keyword" in hint or "key" in hint):
        return _rule(RuleType.DOMAIN_KEYWORD, s)
    if "domain" in hint:
        return _rule(RuleType.DOMAIN_SUFFIX, s)
    if "ip" in hint or "cidr" in hint:
        return _rule(RuleType.IP_CIDR, s)
    if "regex" in hint or "re" in hint:
        return _rule(RuleType.REGEX, s)
    return None


def classify_entry(entry: dict[str, RawValue]) -> list[str]:
    value = _probe(entry, CONTENT_KEYS)
    hint = None
    for key in TYPE_KEYS:
        if key in entry:
            hint = to_text(entry[key]).lower()
            break
    if value is None:
        value = _probe(entry, FALLBACK_CONTENT_KEYS)
    match value:
        case None:
            return [_rule(RuleType.REGEX, escape_regex(to_text(entry)))]
        case list():
            lines = []
            for element in value:
                lines.extend(classify(element))
            return lines
    s = to_text(value).strip()
    if not s:
        return []
    if hint and (line := _classify_hinted(hint, s)) is not None:
        return [line]
    return classify_text(s)


def classify(candidate: RawValue) -> list[str]:
    """Turn one candidate into zero or more ``TYPE,CONTENT`` lines."""
    match candidate:
        case None:
            return []
        case str():
            return classify_text(candidate)
        case dict():
            return classify_entry(candidate)
        case list():
            lines = []
            for element in candidate:
                lines.extend(classify(element))
            return lines
        case _:
            return classify_text(to_text(candidate))


def aggregate(lines: Iterable[str], *, sort: bool = False) -> tuple[str, ...]:
    unique = dict.fromkeys(lines)
    if sort:
        return tuple(sorted(unique))
    return tuple(unique)


def convert(document: RawValue, *, sort: bool = False) -> tuple[str, ...]:
    candidates = flatten(document)
    logging.info("found %d raw entries", len(candidates))

    def lines():
        for candidate in candidates:
            try:
                produced = classify(candidate)
            except Exception:
                logging.info("skip entry|%r", candidate, exc_info=True)
                continue
            yield from produced

    return aggregate(lines(), sort=sort)
