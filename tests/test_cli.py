"""Tests for the command line interface."""

import json
from unittest.mock import patch

import pytest

from portal_crawler.cli import load_config, main
from portal_crawler.models import UnitStatus
from portal_crawler.state_store import ProgressStore


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep main() from replacing the root handlers pytest installs."""
    with patch("portal_crawler.cli.setup_logging"):
        yield


@pytest.fixture
def state_file(tmp_path):
    path = tmp_path / "crawler-state.json"
    store = ProgressStore(str(path))
    store.load()
    store.enqueue_items("UK", "masters", ["https://p/1", "https://p/2"])
    store.mutate("UK", "masters", lambda u: u.transition(UnitStatus.IN_PROGRESS))
    store.mark_item_done("UK", "masters", "https://p/1", error="https://p/1: exhausted")
    return path


class TestProgressCommand:
    """Tests for `progress`."""

    def test_text_output(self, state_file, capsys):
        main(["--state-file", str(state_file), "progress"])

        out = capsys.readouterr().out
        assert "UK/masters" in out
        assert "in_progress" in out
        assert "last error: https://p/1: exhausted" in out

    def test_json_output(self, state_file, capsys):
        main(["--state-file", str(state_file), "progress", "--output", "json"])

        summary = json.loads(capsys.readouterr().out)
        assert summary["units"][0]["pending"] == 1
        assert summary["totals"]["items_failed"] == 1

    def test_empty_state(self, tmp_path, capsys):
        main(["--state-file", str(tmp_path / "none.json"), "progress"])

        assert "No progress recorded yet." in capsys.readouterr().out


class TestResetCommand:
    """Tests for `reset`."""

    def test_reset_with_yes(self, state_file, capsys):
        main(["--state-file", str(state_file), "reset", "--yes"])

        assert json.loads(state_file.read_text())["units"] == []
        assert "Progress reset." in capsys.readouterr().out

    def test_reset_aborted(self, state_file, capsys):
        with patch("builtins.input", return_value="n"):
            main(["--state-file", str(state_file), "reset"])

        assert len(json.loads(state_file.read_text())["units"]) == 1
        assert "Aborted." in capsys.readouterr().out


class TestLoadConfig:
    """Tests for CLI overrides on top of config."""

    def test_overrides(self, tmp_path):
        config_path = tmp_path / "crawl.json"
        config_path.write_text(json.dumps({"crawl": {"request_delay": 9}}))

        class Args:
            config = str(config_path)
            state_file = "custom.json"
            targets = ["Germany"]
            categories = ["bachelors"]
            headless = False
            solver = "mock"
            max_pages = 4
            allow_partial_phases = True

        config = load_config(Args())

        assert config.request_delay == 9
        assert config.state_file == "custom.json"
        assert config.targets == ["Germany"]
        assert config.categories == ["bachelors"]
        assert config.headless is False
        assert config.solver_service == "mock"
        assert config.max_listing_pages == 4
        assert config.allow_partial_phases is True

    def test_zero_max_pages_is_applied(self):
        class Args:
            max_pages = 0

        assert load_config(Args()).max_listing_pages == 0

    def test_headless_not_overridden_when_unset(self):
        class Args:
            headless = None

        with patch.dict("os.environ", {"CRAWL_HEADLESS": "false"}):
            config = load_config(Args())

        assert config.headless is False
