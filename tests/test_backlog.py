import json
import random

from fleet_worker.backlog import DirectoryBacklog, StaticBacklog


def test_static_backlog_shuffles_but_keeps_every_item():
    items = [f"app-{i}" for i in range(20)]
    backlog = StaticBacklog(items, rng=random.Random(7))
    assert sorted(backlog) == sorted(items)
    assert list(StaticBacklog(items, shuffle=False)) == items


def test_static_backlog_from_file(tmp_path):
    path = tmp_path / "items.txt"
    path.write_text("# scraped 2024-01-01\nshopify\n\n  slack  \n")
    assert list(StaticBacklog.from_file(path, shuffle=False)) == ["shopify", "slack"]


def test_directory_backlog_drains_and_retires_files(tmp_path):
    (tmp_path / "crm.json").write_text(json.dumps({"category": "crm", "items": ["hubspot", "salesforce"]}))
    (tmp_path / "chat.json").write_text(json.dumps({
        "category": "chat",
        "urls": ["https://zapier.com/apps/slack/integrations", "https://zapier.com/blog/unrelated"],
    }))
    (tmp_path / "broken.json").write_text("{not json")

    items = list(DirectoryBacklog(tmp_path, rng=random.Random(1)))

    assert sorted(items) == ["hubspot", "salesforce", "slack"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["broken.failed", "chat.processed", "crm.processed"]


def test_directory_backlog_picks_up_new_files(tmp_path):
    (tmp_path / "first.json").write_text(json.dumps({"items": ["a"]}))
    backlog = iter(DirectoryBacklog(tmp_path))

    assert next(backlog) == "a"
    (tmp_path / "second.json").write_text(json.dumps({"items": ["b"]}))
    assert list(backlog) == ["b"]


def test_empty_directory(tmp_path):
    assert list(DirectoryBacklog(tmp_path)) == []
