"""
Unit tests for the JSON-backed sync state and repository registry
"""
import json

from indexer.models import RepoRegistration
from indexer.state import REPOSITORIES_FILE, SYNC_STATE_FILE, RepoRegistry, SyncStateStore


def test_first_read_initializes_empty_document(tmp_path):
    store = SyncStateStore(tmp_path / "data")

    assert store.get("octo/repo") is None
    assert json.loads((tmp_path / "data" / SYNC_STATE_FILE).read_text()) == {}


def test_set_get_clear(tmp_path):
    store = SyncStateStore(tmp_path)
    store.set("octo/repo", "b1")
    store.set("octo/other", "c9")

    assert store.get("octo/repo") == "b1"
    assert SyncStateStore(tmp_path).get("octo/repo") == "b1"

    store.set("octo/repo", "m1")
    assert store.get("octo/repo") == "m1"

    store.clear("octo/repo")
    assert store.get("octo/repo") is None
    assert store.all() == {"octo/other": "c9"}


def test_clear_unknown_repo_is_noop(tmp_path):
    store = SyncStateStore(tmp_path)
    store.clear("octo/missing")
    assert store.all() == {}


def test_corrupt_state_is_treated_as_empty(tmp_path):
    path = tmp_path / SYNC_STATE_FILE
    path.write_text("{not json")

    store = SyncStateStore(tmp_path)
    assert store.get("octo/repo") is None
    assert json.loads(path.read_text()) == {}

    store.set("octo/repo", "b1")
    assert store.get("octo/repo") == "b1"


def test_non_object_state_is_reset(tmp_path):
    (tmp_path / SYNC_STATE_FILE).write_text('["b1"]')
    assert SyncStateStore(tmp_path).all() == {}


def test_writes_leave_no_temp_files(tmp_path):
    store = SyncStateStore(tmp_path)
    for i in range(5):
        store.set("octo/repo", f"sha{i}")
    assert sorted(p.name for p in tmp_path.iterdir()) == [SYNC_STATE_FILE]


def test_registry_merges_records(tmp_path):
    registry = RepoRegistry(tmp_path)
    registry.store(RepoRegistration(
        installation_id=1, owner="octo", repo="repo", repo_slug="octo/repo",
        installation_account="octo", last_action="opened",
    ))
    merged = registry.store(RepoRegistration(
        installation_id=1, owner="octo", repo="repo", repo_slug="octo/repo",
        last_action="closed",
    ))

    assert merged.installation_account == "octo"
    assert merged.last_action == "closed"
    assert registry.get("octo/repo").last_action == "closed"
    assert [r.repo_slug for r in registry.list_repos()] == ["octo/repo"]
    assert (tmp_path / REPOSITORIES_FILE).exists()


def test_registry_skips_malformed_entries(tmp_path):
    (tmp_path / REPOSITORIES_FILE).write_text(json.dumps({
        "octo/repo": {"installation_id": 1, "owner": "octo", "repo": "repo", "repo_slug": "octo/repo"},
        "broken/repo": {"owner": "broken"},
    }))
    assert [r.repo_slug for r in RepoRegistry(tmp_path).list_repos()] == ["octo/repo"]
