"""Tests for the command line entry point."""

from __future__ import annotations

import pytest

from link_validator import cli
from link_validator.crawler.models import CrawlRecord, CrawlReport
from link_validator.crawler.uri_types import AbsoluteUri
from link_validator.reporting.markdown import generate_markdown

ROOT = AbsoluteUri("http://example.com/")


def make_report(*statuses) -> CrawlReport:
    internal = {"/": CrawlRecord(ROOT, 200)}
    for i, status in enumerate(statuses):
        path = f"/page-{i}"
        internal[path] = CrawlRecord(AbsoluteUri(f"http://example.com{path}"), status, (ROOT,))
    return CrawlReport(root_uri=ROOT, internal_links=internal)


@pytest.fixture
def fake_crawl(monkeypatch):
    """Replace the network crawl with a canned report."""
    state = {"report": make_report(200), "configs": []}

    async def crawl_website(config, monitor=None, rng=None):
        state["configs"].append(config)
        return state["report"]

    monkeypatch.setattr(cli, "crawl_website", crawl_website)
    monkeypatch.setattr(cli, "setup_logging", lambda config: None)
    monkeypatch.setattr(cli, "log_system_info", lambda: None)
    monkeypatch.delenv("LINK_VALIDATOR_MAX_EXTERNAL_RETRIES", raising=False)
    monkeypatch.delenv("LINK_VALIDATOR_RETRY_DELAY_SECONDS", raising=False)
    return state


@pytest.mark.parametrize("url", ["example.com", "/relative", "ftp://example.com/"])
def test_invalid_url(url, fake_crawl, capsys):
    assert cli.main(["--url", url]) == 1
    assert "must be an absolute uri" in capsys.readouterr().err
    assert fake_crawl["configs"] == []


def test_writes_sitemap_to_stdout(fake_crawl, capsys):
    assert cli.main(["--url", "http://example.com"]) == 0
    assert capsys.readouterr().out == generate_markdown(fake_crawl["report"])


def test_writes_sitemap_to_file(fake_crawl, tmp_path):
    output = tmp_path / "sitemap.md"

    assert cli.main(["--url", "http://example.com", "--output", str(output)]) == 0
    assert output.read_text(encoding="utf-8") == generate_markdown(fake_crawl["report"])


def test_retry_flags_override_defaults(fake_crawl):
    cli.main(["--url", "http://example.com", "--max-external-retries", "1", "--retry-delay-seconds", "0.5"])

    config = fake_crawl["configs"][0]
    assert config.max_external_retries == 1
    assert config.default_external_retry_delay == 0.5


def test_retry_environment_variables(fake_crawl, monkeypatch):
    monkeypatch.setenv("LINK_VALIDATOR_MAX_EXTERNAL_RETRIES", "7")
    cli.main(["--url", "http://example.com"])

    assert fake_crawl["configs"][0].max_external_retries == 7


def test_diff_without_strict_succeeds(fake_crawl, tmp_path, capsys):
    previous = tmp_path / "previous.md"
    previous.write_text(generate_markdown(make_report(200, 200)), encoding="utf-8")

    assert cli.main(["--url", "http://example.com", "--output", str(tmp_path / "new.md"),
                     "--diff", str(previous)]) == 0
    assert "Missing: | `/page-1` | 200 | / |" in capsys.readouterr().out


def test_strict_diff_fails_on_missing_page(fake_crawl, tmp_path):
    previous = tmp_path / "previous.md"
    previous.write_text(generate_markdown(make_report(200, 200)), encoding="utf-8")

    assert cli.main(["--url", "http://example.com", "--output", str(tmp_path / "new.md"),
                     "--diff", str(previous), "--strict"]) == 1


def test_strict_diff_fails_on_new_broken_page(fake_crawl, tmp_path):
    previous = tmp_path / "previous.md"
    previous.write_text(generate_markdown(make_report(200)), encoding="utf-8")
    fake_crawl["report"] = make_report(200, 404)

    assert cli.main(["--url", "http://example.com", "--output", str(tmp_path / "new.md"),
                     "--diff", str(previous), "--strict"]) == 1


def test_strict_diff_passes_when_unchanged(fake_crawl, tmp_path):
    previous = tmp_path / "previous.md"
    previous.write_text(generate_markdown(make_report(200)), encoding="utf-8")

    assert cli.main(["--url", "http://example.com", "--output", str(tmp_path / "new.md"),
                     "--diff", str(previous), "--strict"]) == 0


def test_missing_config_file(fake_crawl, tmp_path, capsys):
    assert cli.main(["--url", "http://example.com", "--config", str(tmp_path / "nope.yaml")]) == 1
    assert "Configuration file not found" in capsys.readouterr().err


def test_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--version"])

    assert excinfo.value.code == 0
    assert "LinkValidator 1.0.0" in capsys.readouterr().out
