from __future__ import annotations

import json
import pathlib

import pytest

from rewatch.storage import graph_store
from rewatch.types import NodeData


def _node(filename: str, *, children: list[str] | None = None) -> NodeData:
    return NodeData(
        filename=filename,
        entry_files=[],
        children=children or [],
        parents=[],
    )


@pytest.fixture
def store(tmp_path: pathlib.Path) -> graph_store.GraphStore:
    return graph_store.GraphStore(tmp_path / graph_store.GRAPH_STORE_FILENAME)


def test_missing_file_loads_empty(store: graph_store.GraphStore) -> None:
    """A store that was never written loads as empty."""
    assert store.load() == {}


def test_empty_file_loads_empty(store: graph_store.GraphStore) -> None:
    """A zero-length document loads as empty."""
    store.path.write_text("")
    assert store.load() == {}


def test_corrupt_file_loads_empty_with_warning(
    store: graph_store.GraphStore, caplog: pytest.LogCaptureFixture
) -> None:
    """Invalid JSON starts fresh and logs a warning."""
    store.path.write_text("{not json")
    assert store.load() == {}
    assert "is corrupt" in caplog.text


def test_wrong_shape_loads_empty(
    store: graph_store.GraphStore, caplog: pytest.LogCaptureFixture
) -> None:
    """A top-level list is rejected."""
    store.path.write_text("[]")
    assert store.load() == {}
    assert "unexpected shape" in caplog.text


def test_malformed_entries_skipped(
    store: graph_store.GraphStore, caplog: pytest.LogCaptureFixture
) -> None:
    """Entries that are not node records are dropped individually."""
    good = _node("/p/a.py")
    store.path.write_text(json.dumps({"/p/a.py": good, "/p/b.py": {"filename": 3}}))
    assert store.load() == {"/p/a.py": good}
    assert "/p/b.py" in caplog.text


def test_replace_then_load(store: graph_store.GraphStore) -> None:
    """Written nodes load back keyed by filename."""
    a = _node("/p/a.py", children=["/p/b.py"])
    b = _node("/p/b.py")
    store.replace([a, b])
    assert store.load() == {"/p/a.py": a, "/p/b.py": b}


def test_replace_drops_previous_keys(store: graph_store.GraphStore) -> None:
    """replace is a full overwrite, not a merge."""
    store.replace([_node("/p/a.py"), _node("/p/b.py")])
    store.replace([_node("/p/b.py")])
    assert list(store.load()) == ["/p/b.py"]


def test_replace_leaves_no_temp_files(store: graph_store.GraphStore) -> None:
    """The atomic write cleans up after itself."""
    store.replace([_node("/p/a.py")])
    assert [p.name for p in store.path.parent.iterdir()] == [graph_store.GRAPH_STORE_FILENAME]


def test_destroy(store: graph_store.GraphStore) -> None:
    """destroy removes the document and tolerates a missing one."""
    store.replace([_node("/p/a.py")])
    store.destroy()
    assert not store.path.exists()
    store.destroy()


def test_atomic_write_failure_removes_temp(tmp_path: pathlib.Path) -> None:
    """A failing writer leaves neither the temp file nor the destination."""
    dest = tmp_path / "out.json"

    def fail(fd: int) -> None:
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        graph_store.atomic_write_file(dest, fail)
    assert list(tmp_path.iterdir()) == []
