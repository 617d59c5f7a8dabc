import os
from datetime import datetime

import pytest

import eventsync.cli as cli
import eventsync.config as cfg_module
from eventsync.errors import ConfigurationError
from eventsync.models import FetchOptions, FetchResult, FetchStats, NormalisedEvent, Venue

CONFIG = """
[database]
path = "{db}"

[ingest]
parallel = false

[sources.ticketmaster]
enabled = false

[sources.fake]
max_pages = 3
request_delay_ms = 0
"""


class FakeScraper:
    source = "fake"
    source_name = "Fake Source"
    seen_options = []

    def __init__(self, source_cfg, session=None):
        self.source_cfg = source_cfg

    def default_options(self):
        return cfg_module.get_source_options(self.source_cfg)

    def fetch_all(self, options):
        FakeScraper.seen_options.append(options)
        event = NormalisedEvent(
            title="Jazz Night", description="Standards.", category="music",
            start_date=datetime(2025, 3, 1, 20, 0),
            venue=Venue("The Forum"), booking_url="https://example.com/1",
            source="fake", source_id="1",
        )
        return FetchResult([event], FetchStats("fake", fetched=1, normalised=1))


@pytest.fixture
def config_file(tmp_path, clean_env, monkeypatch):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG.format(db=(tmp_path / "events.db").as_posix()))
    monkeypatch.setitem(cli.SCRAPERS, "fake", FakeScraper)
    monkeypatch.chdir(tmp_path)
    FakeScraper.seen_options = []
    return path


def test_load_overlays_secrets_file(tmp_path, clean_env):
    config = tmp_path / "config.toml"
    config.write_text("[sources.ticketmaster]\nmax_pages = 2\n")
    secrets = tmp_path / "secrets"
    secrets.write_text("# keys\nTICKETMASTER_API_KEY='from-file'\n")

    cfg = cfg_module.load(config, secrets)

    assert cfg["sources"]["ticketmaster"] == {"max_pages": 2, "api_key": "from-file"}


def test_shell_environment_wins_over_secrets_file(tmp_path, clean_env):
    clean_env.setenv("TICKETMASTER_API_KEY", "from-shell")
    config = tmp_path / "config.toml"
    config.write_text("")
    secrets = tmp_path / "secrets"
    secrets.write_text("TICKETMASTER_API_KEY=from-file\n")

    cfg = cfg_module.load(config, secrets)

    assert cfg["sources"]["ticketmaster"]["api_key"] == "from-shell"
    assert os.environ["TICKETMASTER_API_KEY"] == "from-shell"


def test_missing_config_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        cfg_module.load(tmp_path / "nope.toml")


def test_get_sources_filters_disabled_and_ingest_list():
    cfg = {
        "ingest": {"sources": ["whatson", "feverup"]},
        "sources": {"whatson": {}, "feverup": {"enabled": False}, "marriner": {}},
    }
    assert list(cfg_module.get_sources(cfg)) == ["whatson"]


def test_get_source_options_applies_overrides():
    options = cfg_module.get_source_options(
        {"max_pages": 4, "categories": ["music"], "fetch_details": True, "enabled": True},
        {"max_pages": None, "fetch_details": False, "request_delay_ms": 0},
    )
    assert options == FetchOptions(categories=["music"], max_pages=4, fetch_details=False, request_delay_ms=0)


def test_scrape_runs_and_prints_summary(config_file, capsys):
    assert cli.main(["--config", str(config_file), "scrape", "--max-items", "5"]) == 0

    out = capsys.readouterr().out
    assert "fake\n  fetched 1, normalised 1, errors 0" in out
    assert "inserted 1" in out
    [options] = FakeScraper.seen_options
    assert options.max_pages == 3
    assert options.max_items == 5

    # A second run finds nothing new
    assert cli.main(["--config", str(config_file), "scrape", "--source", "fake"]) == 0
    assert "skipped 1" in capsys.readouterr().out


def test_unknown_source_exits_with_error(config_file, capsys):
    assert cli.main(["--config", str(config_file), "scrape", "--source", "nowhere"]) == 1
    assert "nowhere" in capsys.readouterr().err


def test_unreadable_config_exits_with_error(tmp_path, capsys):
    assert cli.main(["--config", str(tmp_path / "missing.toml"), "sources"]) == 1
    assert "cannot read config" in capsys.readouterr().err


def test_sources_lists_registry(config_file, capsys):
    assert cli.main(["--config", str(config_file), "sources"]) == 0
    out = capsys.readouterr().out
    assert "ticketmaster" in out and "disabled" in out
    assert "Fake Source" in out
