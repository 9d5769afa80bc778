"""Tests for app/services/build/memory.py -- ProjectMemory."""

from uuid import uuid4

from app.services.build.memory import ProjectMemory


def test_empty_memory():
    mem = ProjectMemory()
    assert not mem
    assert len(mem) == 0
    assert mem.build_context() == "No files created yet."


def test_hydrate_skips_folders_keeps_empty_files():
    fid = uuid4()
    mem = ProjectMemory()
    loaded = mem.hydrate([
        {"id": fid, "path": "a.java", "content": "fresh", "is_folder": False},
        {"id": uuid4(), "path": "src", "content": "", "is_folder": True},
        {"id": uuid4(), "path": "empty.txt", "content": "", "is_folder": False},
    ])
    assert loaded == 2
    assert mem.get("a.java") == "fresh"
    assert mem.file_id("a.java") == fid
    assert mem.get("empty.txt") == ""
    assert "src" not in mem


def test_hydrate_drops_paths_missing_from_store():
    mem = ProjectMemory()
    mem.put("Old.java", "class Old {}", uuid4())
    mem.put("a.java", "stale", uuid4())
    fid = uuid4()
    mem.hydrate([{"id": fid, "path": "a.java", "content": "fresh", "is_folder": False}])
    assert mem.paths() == ["a.java"]
    assert mem.get("a.java") == "fresh"
    assert mem.file_id("a.java") == fid
    assert mem.file_id("Old.java") is None


def test_put_and_remove():
    fid = uuid4()
    mem = ProjectMemory()
    mem.put("a.java", "A", fid)
    mem.put("a.java", "A2")
    assert mem.get("a.java") == "A2"
    assert mem.file_id("a.java") == fid
    mem.remove("a.java")
    assert mem.get("a.java") is None
    assert mem.file_id("a.java") is None
    mem.remove("missing")


def test_to_dict_is_a_copy():
    mem = ProjectMemory()
    mem.put("a", "1")
    d = mem.to_dict()
    d["b"] = "2"
    assert "b" not in mem


def test_build_context_priority_first():
    mem = ProjectMemory()
    mem.put("first.java", "1")
    mem.put("second.java", "2")
    ctx = mem.build_context(["second.java"])
    assert ctx.startswith("Files created so far:")
    assert ctx.index("--- second.java ---") < ctx.index("--- first.java ---")


def test_build_context_budget_omits_content():
    mem = ProjectMemory()
    mem.put("small.java", "x")
    mem.put("big.java", "y" * 500)
    ctx = mem.build_context(budget=100)
    assert "--- small.java ---" in ctx
    assert "y" * 500 not in ctx
    assert "Other files (content omitted):\n- big.java" in ctx


def test_build_context_includes_summaries():
    mem = ProjectMemory()
    mem.put("a.java", "A")
    ctx = mem.build_context(summaries={"Config.java": "Loads config. Exports: load"})
    assert "Context from existing files:" in ctx
    assert "- `Config.java`: Loads config. Exports: load" in ctx
