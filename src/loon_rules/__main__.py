#!/usr/bin/env python
import logging
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Optional, Sequence
from urllib.parse import urlparse

import requests
import typer
import yaml

from .common import setup_logging
from .lib import RawValue, aggregate, convert
from .schema import convert_document

DEFAULT_URL = "https://raw.githubusercontent.com/Yuu518/sing-box-rules/rule_set/rule_set_site/category-ads-all.json"  # noqa: E501
DEFAULT_OUTPUT = "reject.list"


class Mode(StrEnum):
    GENERAL = "general"
    SCHEMA = "schema"


class Format(StrEnum):
    AUTO = "auto"
    JSON = "json"
    YAML = "yaml"


app = typer.Typer(
    pretty_exceptions_enable=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _is_yaml(url: str, format_: Format) -> bool:
    if format_ == Format.AUTO:
        return urlparse(url).path.endswith((".yaml", ".yml"))
    return format_ == Format.YAML


def fetch_document(
    url: str, *, format_: Format = Format.AUTO, timeout: Optional[float] = None
) -> RawValue:
    logging.info("fetch|%s", url)
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    if _is_yaml(url, format_):
        return yaml.safe_load(response.text)
    return response.json()


def render(rules: Sequence[str], source: str) -> str:
    header = [
        "# Converted by loon-rules",
        f"# Source: {source}",
        f"# Rules: {len(rules)}",
        "# Format: TYPE,CONTENT (no action column)",
        "",
    ]
    return "\n".join([*header, *rules]) + "\n"


def write_rules(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


@app.command()
def main(
    *,
    url: Annotated[
        str, typer.Option("--url", "-u", envvar="LOON_RULES_URL")
    ] = DEFAULT_URL,
    output: Annotated[
        Path, typer.Option("--output", "-o", envvar="LOON_RULES_OUTPUT")
    ] = Path(DEFAULT_OUTPUT),
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
    mode: Mode = Mode.GENERAL,
    sort: bool = False,
    format_: Annotated[Format, typer.Option("--format")] = Format.AUTO,
    timeout: Optional[float] = None,
):
    """Convert a JSON rule set into a TYPE,CONTENT rule list."""
    setup_logging(verbose)

    try:
        document = fetch_document(url, format_=format_, timeout=timeout)
    except (requests.RequestException, yaml.YAMLError) as e:
        logging.error("fetch failed|%s|%s", url, e)
        raise typer.Exit(code=1)

    logging.info("converting|mode=%s", mode)
    if mode == Mode.SCHEMA:
        rules = aggregate(convert_document(document), sort=sort)
    else:
        rules = convert(document, sort=sort)

    path = output.resolve()
    write_rules(path, render(rules, url))
    logging.info("wrote %d rules to %s", len(rules), path)


if __name__ == "__main__":
    app()
