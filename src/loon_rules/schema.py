import logging
import re
from typing import Callable

from .lib import RawValue, RuleType

RE_SCHEME = re.compile(r"^[a-z][a-z0-9+.\-]*://")
RE_PORT = re.compile(r":[0-9]*$")


def clean_domain(text: str) -> str:
    """Reduce a URL-ish entry such as ``HTTPS://Ads.Example.com:443/x`` to its host."""
    s = RE_SCHEME.sub("", text.strip().lower())
    s = re.split(r"[/?#]", s, maxsplit=1)[0]
    s = s.rpartition("@")[2]
    s = RE_PORT.sub("", s)
    return s.lstrip("*.").rstrip(".")


def _clean_keyword(text: str) -> str:
    return text.strip().lower()


FIELDS: dict[str, tuple[RuleType, Callable[[str], str]]] = {
    "domain": (RuleType.DOMAIN_SUFFIX, clean_domain),
    "domain_suffix": (RuleType.DOMAIN_SUFFIX, clean_domain),
    "domain_keyword": (RuleType.DOMAIN_KEYWORD, _clean_keyword),
    "domain_regex": (RuleType.REGEX, str.strip),
    "ip_cidr": (RuleType.IP_CIDR, str.strip),
}


def convert_rule(rule: dict[str, RawValue]) -> list[str]:
    lines = []
    for field, (type_, clean) in FIELDS.items():
        match rule.get(field):
            case None:
                continue
            case str() as value:
                values = [value]
            case list() as values:
                pass
            case other:
                logging.warning("unexpected %s|%r", field, other)
                continue
        for value in values:
            if not isinstance(value, str):
                logging.warning("skipped %s value|%r", field, value)
                continue
            content = clean(value)
            if not content:
                continue
            if "\n" in content or "\r" in content:
                logging.warning("skipped %s value with line break|%r", field, value)
                continue
            lines.append(f"{type_},{content}")
    return lines


def convert_document(document: RawValue) -> list[str]:
    """Convert a sing-box style ``{"rules": [{"domain": [...]}, ...]}`` document.

    Only the known fields of each rule are read; a document without a usable
    ``rules`` list yields no lines at all.
    """
    rules = document.get("rules") if isinstance(document, dict) else None
    if not isinstance(rules, list):
        logging.warning("no rules list in document, writing an empty rule set")
        return []
    lines = []
    for rule in rules:
        if not isinstance(rule, dict):
            logging.warning("skipped rule|%r", rule)
            continue
        lines.extend(convert_rule(rule))
    return lines
