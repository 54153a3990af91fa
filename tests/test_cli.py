import json

import click
import pytest
from click.testing import CliRunner

from fleet.cli import load_processor, main

PROCESSOR_MODULE = """
from fleet_worker.processor import ProcessResult

async def process(item_id):
    return ProcessResult.success({"length": len(item_id)})

class Flaky:
    async def __call__(self, item_id):
        return ProcessResult.failure("always")
"""


@pytest.fixture
def processors(tmp_path, monkeypatch):
    (tmp_path / "my_processors.py").write_text(PROCESSOR_MODULE)
    monkeypatch.syspath_prepend(str(tmp_path))
    return "my_processors"


@pytest.fixture
def store_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'fleet.db'}"


def invoke(*args):
    return CliRunner().invoke(main, list(args), catch_exceptions=False)


def test_worker_then_status_then_sweep(store_url, processors, tmp_path):
    result = invoke(
        "--store-url", store_url, "worker", "Shopify", "slack",
        "--processor", f"{processors}:process", "--item-delay", "0", "--cache-dir", str(tmp_path / "lock"),
    )
    assert result.exit_code == 0, result.output
    assert "2 processed, 0 skipped, 0 failed" in result.output
    assert (tmp_path / "lock" / "shopify.lock").exists()

    result = invoke("--store-url", store_url, "status", "SHOPIFY", "--json")
    assert result.exit_code == 0
    status = json.loads(result.stdout)
    assert status["is_completed"] is True and status["is_leased"] is False
    assert status["completion"]["result_summary"] == {"length": 7}

    # Second run finds everything done, via the local cache
    result = invoke(
        "--store-url", store_url, "worker", "shopify", "slack",
        "--processor", f"{processors}:process", "--item-delay", "0", "--cache-dir", str(tmp_path / "lock"),
    )
    assert "0 processed, 2 skipped, 0 failed" in result.output

    result = invoke("--store-url", store_url, "sweep", "--completions", "--heartbeats", "--yes")
    assert result.exit_code == 0
    assert "Deleted 3 keys" in result.output


def test_worker_failures_do_not_change_exit_code(store_url, processors):
    result = invoke(
        "--store-url", store_url, "worker", "shopify",
        "--processor", f"{processors}:Flaky", "--item-delay", "0", "--max-retries", "0", "--no-local-cache",
    )
    assert result.exit_code == 0
    assert "1 failed" in result.output


def test_worker_exits_nonzero_when_store_unreachable(tmp_path, processors):
    url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'fleet.db'}"
    result = CliRunner().invoke(main, [
        "--store-url", url, "worker", "shopify", "--processor", f"{processors}:process", "--no-local-cache",
    ])
    assert result.exit_code == 1


def test_worker_needs_one_item_source(store_url, processors):
    result = CliRunner().invoke(main, ["--store-url", store_url, "worker", "--processor", f"{processors}:process"])
    assert result.exit_code == 2
    assert "exactly one" in result.output


def test_worker_needs_one_processor(store_url):
    result = CliRunner().invoke(main, ["--store-url", store_url, "worker", "shopify"])
    assert result.exit_code == 2


def test_monitor_once(store_url, processors, tmp_path):
    invoke(
        "--store-url", store_url, "worker", "shopify",
        "--processor", f"{processors}:process", "--item-delay", "0", "--no-local-cache", "--worker-id", "box-1",
    )
    result = CliRunner().invoke(main, ["--store-url", store_url, "monitor", "--once"], env={"COLUMNS": "200"})
    assert result.exit_code == 0
    assert "box-1" in result.output
    assert "Total Items Completed: 1" in result.output


def test_load_processor(processors):
    assert callable(load_processor(f"{processors}:process"))
    assert callable(load_processor(f"{processors}:Flaky"))
    for bad in ("no_colon", f"{processors}:missing", "not_a_module_xyz:thing"):
        with pytest.raises(click.BadParameter):
            load_processor(bad)
