import json

import pytest
import requests
from typer.testing import CliRunner

from loon_rules.__main__ import DEFAULT_URL, app, render

runner = CliRunner()


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200):
        self.text = text
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        return json.loads(self.text)


@pytest.fixture
def served(monkeypatch):
    calls = []

    def serve(text: str, status_code: int = 200):
        def fake_get(url, timeout=None):
            calls.append((url, timeout))
            return FakeResponse(text, status_code)

        monkeypatch.setattr(requests, "get", fake_get)
        return calls

    return serve


def test_render():
    assert render(("REGEX,a", "IP-CIDR,1.1.1.1"), "http://x") == (
        "# Converted by loon-rules\n"
        "# Source: http://x\n"
        "# Rules: 2\n"
        "# Format: TYPE,CONTENT (no action column)\n"
        "\n"
        "REGEX,a\n"
        "IP-CIDR,1.1.1.1\n"
    )


def test_convert_general(served, tmp_path):
    calls = served(
        json.dumps(
            {
                "rules": [
                    {"domain": ["||ads.example.com^", "*.tracker.net"]},
                    {"type": "domain_keyword", "value": "adserv"},
                    {"type": "domain_keyword", "value": "adserv"},
                ]
            }
        )
    )
    output = tmp_path / "nested" / "reject.list"
    result = runner.invoke(app, ["-u", "http://rules/ads.json", "-o", str(output)])
    assert result.exit_code == 0, result.output
    assert calls == [("http://rules/ads.json", None)]
    assert output.read_text(encoding="utf-8").splitlines()[2:] == [
        "# Rules: 3",
        "# Format: TYPE,CONTENT (no action column)",
        "",
        "DOMAIN-SUFFIX,ads.example.com",
        "REGEX,.*\\.tracker\\.net",
        "DOMAIN-KEYWORD,adserv",
    ]


def test_convert_schema_sorted(served, tmp_path):
    served(
        json.dumps(
            {"rules": [{"domain": ["Z.com/x"], "domain_suffix": ["a.com", "z.com"]}]}
        )
    )
    output = tmp_path / "reject.list"
    result = runner.invoke(
        app, ["-o", str(output), "--mode", "schema", "--sort", "--timeout", "5"]
    )
    assert result.exit_code == 0, result.output
    content = output.read_text(encoding="utf-8")
    assert f"# Source: {DEFAULT_URL}\n" in content
    assert content.endswith("\nDOMAIN-SUFFIX,a.com\nDOMAIN-SUFFIX,z.com\n")


def test_convert_schema_without_rules(served, tmp_path):
    served(json.dumps({"payload": ["a.com"]}))
    output = tmp_path / "reject.list"
    result = runner.invoke(app, ["-o", str(output), "--mode", "schema"])
    assert result.exit_code == 0, result.output
    assert "# Rules: 0\n" in output.read_text(encoding="utf-8")


def test_convert_yaml_provider(served, tmp_path):
    served("payload:\n  - '+.ads.example.com'\n  - ads.example.org\n")
    output = tmp_path / "reject.list"
    result = runner.invoke(app, ["-u", "http://rules/ads.yaml", "-o", str(output)])
    assert result.exit_code == 0, result.output
    assert output.read_text(encoding="utf-8").endswith(
        "\nDOMAIN-SUFFIX,ads.example.com\nDOMAIN-SUFFIX,ads.example.org\n"
    )


def test_output_from_environment(served, tmp_path, monkeypatch):
    served(json.dumps(["a.com"]))
    output = tmp_path / "env.list"
    monkeypatch.setenv("LOON_RULES_OUTPUT", str(output))
    result = runner.invoke(app, [])
    assert result.exit_code == 0, result.output
    assert output.read_text(encoding="utf-8").endswith("\nDOMAIN-SUFFIX,a.com\n")


def test_http_error(served, tmp_path):
    served("not found", status_code=404)
    output = tmp_path / "reject.list"
    result = runner.invoke(app, ["-o", str(output)])
    assert result.exit_code == 1
    assert not output.exists()


def test_transport_error(monkeypatch, tmp_path):
    def fake_get(url, timeout=None):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(requests, "get", fake_get)
    output = tmp_path / "reject.list"
    result = runner.invoke(app, ["-o", str(output), "-v"])
    assert result.exit_code == 1
    assert not output.exists()


def test_invalid_json(monkeypatch, tmp_path):
    class BrokenResponse(FakeResponse):
        def json(self):
            raise requests.JSONDecodeError("Expecting value", "<html>", 0)

    monkeypatch.setattr(requests, "get", lambda url, timeout=None: BrokenResponse(""))
    result = runner.invoke(app, ["-o", str(tmp_path / "reject.list")])
    assert result.exit_code == 1


def test_help():
    result = runner.invoke(app, ["-h"])
    assert result.exit_code == 0
    assert "--url" in result.output
