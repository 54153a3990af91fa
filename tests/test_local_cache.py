import json

import pytest

from fleet_worker.local_cache import LocalCompletionCache


def test_mark_and_check(tmp_path):
    cache = LocalCompletionCache(tmp_path / "lock", "worker-a")
    assert cache.is_complete("shopify") is False

    assert cache.mark_complete("Shopify") is True
    assert cache.is_complete("shopify") is True

    record = json.loads((tmp_path / "lock" / "shopify.lock").read_text())
    assert record["worker_id"] == "worker-a"
    assert "processed_at" in record


def test_separators_stay_inside_directory(tmp_path):
    cache = LocalCompletionCache(tmp_path / "lock", "worker-a")
    cache.mark_complete("../escape")
    assert cache.is_complete("../escape")
    assert not (tmp_path / "escape.lock").exists()
    assert [p.name for p in (tmp_path / "lock").iterdir()] == ["..%2Fescape.lock"]


@pytest.mark.parametrize("marked, other", [
    ("a_b", "a/b"),
    ("a/b", "a_b"),
    ("a/b", "a\\b"),
    ("a%2fb", "a/b"),
])
def test_distinct_ids_never_share_a_file(tmp_path, marked, other):
    cache = LocalCompletionCache(tmp_path, "worker-a")
    cache.mark_complete(marked)
    assert cache.is_complete(marked)
    assert not cache.is_complete(other)


def test_unwritable_directory_is_not_fatal(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    cache = LocalCompletionCache(blocker, "worker-a")

    assert cache.mark_complete("shopify") is False
    assert cache.is_complete("shopify") is False
