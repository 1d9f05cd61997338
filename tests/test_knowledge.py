"""Tests for the in-memory knowledge store."""

import os
import threading

import pytest

from unvibe.knowledge import MAX_ACTIONS, KnowledgeStore


class TestFiles:
    def test_store_and_get_by_path(self):
        store = KnowledgeStore()
        store.store_file("/tmp/proj/a.txt", "hello")
        record = store.get_file("/tmp/proj/a.txt")
        assert record.content == "hello"
        assert record.size == 5
        assert record.name == "a.txt"

    def test_latest_write_wins(self):
        store = KnowledgeStore()
        store.store_file("/tmp/proj/a.txt", "one")
        store.store_file("/tmp/proj/a.txt", "two")
        assert store.list_files() == ["/tmp/proj/a.txt"]
        assert store.get_file("/tmp/proj/a.txt").content == "two"

    def test_get_by_relative_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = KnowledgeStore()
        store.store_file(os.path.abspath("notes.txt"), "n")
        assert store.get_file("notes.txt").content == "n"

    def test_get_by_basename(self):
        store = KnowledgeStore()
        store.store_file("/tmp/proj/src/main.py", "code")
        assert store.get_file("main.py").path == "/tmp/proj/src/main.py"

    def test_get_by_substring(self):
        store = KnowledgeStore()
        store.store_file("/tmp/proj/src/main.py", "code")
        assert store.get_file("src/main").path == "/tmp/proj/src/main.py"

    def test_get_missing(self):
        assert KnowledgeStore().get_file("nope.txt") is None

    def test_list_files_orders_by_last_write(self):
        store = KnowledgeStore()
        store.store_file("/p/a", "1")
        store.store_file("/p/b", "2")
        store.store_file("/p/a", "3")
        assert store.list_files() == ["/p/b", "/p/a"]


class TestSearchFiles:
    def test_case_insensitive_with_line_numbers(self):
        store = KnowledgeStore()
        store.store_file("/p/a.py", "x = 1\n# todo: fix\ny = 2\n# TODO again")
        store.store_file("/p/b.py", "nothing")
        results = store.search_files("TODO")
        assert len(results) == 1
        assert results[0]["name"] == "a.py"
        assert results[0]["matches"] == 2
        assert [line["line"] for line in results[0]["lines"]] == [2, 4]

    def test_lines_capped(self):
        store = KnowledgeStore()
        store.store_file("/p/a", "\n".join(["hit"] * 12))
        result = store.search_files("hit")[0]
        assert result["matches"] == 12
        assert len(result["lines"]) == 5


class TestActions:
    def test_bounded_log_keeps_most_recent_in_order(self):
        store = KnowledgeStore()
        for i in range(MAX_ACTIONS + 10):
            store.add_action("read", f"f{i}", {"success": True})
        actions = store.recent_actions(MAX_ACTIONS + 10)
        assert len(actions) == MAX_ACTIONS
        assert actions[0].target == "f10"
        assert actions[-1].target == f"f{MAX_ACTIONS + 9}"

    def test_custom_size(self):
        store = KnowledgeStore(max_actions=3)
        for i in range(5):
            store.add_action("list", str(i), {"success": True})
        assert [a.target for a in store.recent_actions()] == ["2", "3", "4"]

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            KnowledgeStore(max_actions=0)

    def test_recent_actions_n(self):
        store = KnowledgeStore()
        for i in range(4):
            store.add_action("list", str(i), {"success": True})
        assert [a.target for a in store.recent_actions(2)] == ["2", "3"]
        assert store.recent_actions(0) == []

    def test_result_is_copied(self):
        store = KnowledgeStore()
        result = {"success": True}
        store.add_action("read", "a", result)
        result["success"] = False
        assert store.recent_actions(1)[0].result["success"] is True


class TestViews:
    def test_context(self):
        store = KnowledgeStore()
        store.store_file("/p/a.txt", "abc")
        for i in range(7):
            store.add_action("read", str(i), {"success": i % 2 == 0})
        ctx = store.context()
        assert [a["target"] for a in ctx["recent_actions"]] == ["2", "3", "4", "5", "6"]
        assert ctx["recent_actions"][1]["success"] is False
        assert ctx["available_files"] == ["/p/a.txt"]
        assert ctx["file_details"][0]["name"] == "a.txt"
        assert ctx["file_details"][0]["size"] == 3

    def test_summary_and_clear(self):
        store = KnowledgeStore()
        store.store_file("/p/a", "x")
        store.add_action("read", "/p/a", {"success": True})
        store.add_conversation("hi", "hello", 0)
        assert store.summary() == {
            "files": 1,
            "actions": 1,
            "max_actions": MAX_ACTIONS,
            "conversations": 1,
        }
        store.clear()
        assert store.summary()["files"] == 0
        assert store.summary()["actions"] == 0
        assert store.conversations() == []

    def test_conversations(self):
        store = KnowledgeStore()
        store.add_conversation("make a folder", "done", 1)
        entry = store.conversations()[0]
        assert entry.user == "make a folder"
        assert entry.commands_executed == 1


def test_concurrent_inserts_are_all_kept():
    store = KnowledgeStore(max_actions=1000)

    def worker(n):
        for i in range(50):
            store.store_file(f"/p/{n}/{i}", str(i))
            store.add_action("create_file", f"{n}/{i}", {"success": True})

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store.list_files()) == 400
    assert store.summary()["actions"] == 400
