"""Tests for concurrent multi-file creation."""

from unvibe.bulk import create_many
from unvibe.knowledge import KnowledgeStore


def test_creates_all_in_order(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = KnowledgeStore()
    files = [(f"pkg/m{i}.py", f"x = {i}\n") for i in range(20)]
    results = create_many(files, store)
    assert all(r.success for r in results)
    assert [r.path for r in results] == [str(tmp_path / p) for p, _ in files]
    for path, content in files:
        assert (tmp_path / path).read_text() == content
    assert len(store.list_files()) == 20
    assert store.summary()["actions"] == 20


def test_duplicate_target_rejected(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = KnowledgeStore()
    results = create_many([("a.txt", "one"), ("./a.txt", "two")], store)
    assert results[0].success
    assert not results[1].success
    assert "duplicate target" in results[1].message
    assert (tmp_path / "a.txt").read_text() == "one"


def test_empty_batch():
    assert create_many([], KnowledgeStore()) == []
