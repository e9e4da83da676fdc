import json
import threading

import pytest

from golink import store as store_mod
from golink.models import Link, new_link
from golink.store import AlreadyExistsError, CorruptStoreError, JSONStore, NotFoundError


def _links_by_alias(store):
    return {link.alias: link for link in store.list()}


# --- construction ---------------------------------------------------------


def test_creates_parent_directory(tmp_path):
    path = tmp_path / "a" / "b" / "links.json"
    s = JSONStore(path, watch=False)
    assert path.parent.is_dir()
    assert s.list() == []
    assert not path.exists()


def test_path_is_absolute(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    s = JSONStore("sub/links.json", watch=False)
    assert s.path.is_absolute()
    assert s.path == tmp_path / "sub" / "links.json"


def test_construction_fails_on_corrupt_file(links_path):
    links_path.parent.mkdir(parents=True)
    links_path.write_text("{not json")
    with pytest.raises(CorruptStoreError):
        JSONStore(links_path, watch=False)


def test_construction_fails_when_directory_cannot_be_created(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    with pytest.raises(OSError):
        JSONStore(blocker / "links.json", watch=False)


def test_watch_false_starts_no_watcher(store):
    assert store.watcher is None


# --- CRUD -----------------------------------------------------------------


def test_create_then_get(store):
    store.create(new_link("gh", "https://github.com/x"))
    link = store.get("gh")
    assert link.alias == "gh"
    assert link.url == "https://github.com/x"


def test_example_create_get_delete(store, links_path):
    store.create(new_link("gh", "https://github.com/x"))
    assert store.get("gh").url == "https://github.com/x"
    store.delete("gh")
    with pytest.raises(NotFoundError):
        store.get("gh")
    assert '"gh"' not in links_path.read_text()


def test_create_duplicate_fails_and_leaves_mapping(store):
    original = new_link("gh", "https://github.com/a")
    store.create(original)
    with pytest.raises(AlreadyExistsError):
        store.create(new_link("gh", "https://github.com/b"))
    assert store.get("gh").url == "https://github.com/a"
    assert len(store) == 1


def test_aliases_are_case_sensitive(store):
    store.create(new_link("GH", "https://upper"))
    store.create(new_link("gh", "https://lower"))
    assert store.get("GH").url == "https://upper"
    assert store.get("gh").url == "https://lower"


@pytest.mark.parametrize("op", ["get", "update", "delete"])
def test_not_found_symmetry(store, op):
    store.create(new_link("keep", "https://keep"))
    before = _links_by_alias(store)
    with pytest.raises(NotFoundError):
        if op == "update":
            store.update(new_link("missing", "https://x"))
        else:
            getattr(store, op)("missing")
    assert _links_by_alias(store) == before


def test_update_replaces_record(store):
    store.create(new_link("gh", "https://old", description="old"))
    store.update(Link(alias="gh", url="https://new", created_at="c", updated_at="u"))
    link = store.get("gh")
    assert link.url == "https://new"
    assert link.description == ""
    assert link.created_at == "c"


def test_update_does_not_refresh_updated_at(store):
    link = new_link("gh", "https://old")
    store.create(link)
    stamped = store.get("gh").updated_at
    store.update(Link(alias="gh", url="https://new", created_at=link.created_at, updated_at=stamped))
    assert store.get("gh").updated_at == stamped


def test_list_returns_fresh_copies(store):
    store.create(new_link("a", "https://a"))
    links = store.list()
    links[0].url = "https://mutated"
    links.clear()
    assert store.get("a").url == "https://a"
    assert len(store.list()) == 1


def test_contains(store):
    store.create(new_link("a", "https://a"))
    assert "a" in store
    assert "b" not in store


# --- persistence ----------------------------------------------------------


def test_mutations_visible_to_fresh_instance(store, links_path):
    store.create(new_link("a", "https://a", "desc", "cat"))
    store.create(new_link("b", "https://b"))
    store.update(Link(alias="b", url="https://b2"))
    store.delete("a")

    fresh = JSONStore(links_path, watch=False)
    assert _links_by_alias(fresh) == _links_by_alias(store)
    assert fresh.get("b").url == "https://b2"
    assert "a" not in fresh


def test_round_trip_preserves_all_fields(store, links_path):
    links = [
        new_link("a", "https://a", "Alpha", "Work"),
        new_link("b", "https://b"),
        Link(alias="ünï", url="https://x/?q=1&r=2", created_at="2024-01-01T00:00:00.123456789Z"),
    ]
    for link in links:
        store.create(link)
    fresh = JSONStore(links_path, watch=False)
    assert _links_by_alias(fresh) == {link.alias: link for link in links}


def test_round_trip_zero_records(store, links_path):
    store.save()
    assert json.loads(links_path.read_text()) == {}
    assert JSONStore(links_path, watch=False).list() == []


def test_file_is_pretty_printed_and_omits_empty_fields(store, links_path):
    store.create(new_link("gh", "https://github.com"))
    text = links_path.read_text()
    assert text.startswith("{\n  \"gh\": {\n")
    doc = json.loads(text)
    assert "description" not in doc["gh"]
    assert "category" not in doc["gh"]


def test_no_temp_file_left_behind(store, links_path):
    store.create(new_link("gh", "https://github.com"))
    leftovers = [p.name for p in links_path.parent.iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


def test_symlinked_file_stays_a_symlink(tmp_path, links_path):
    target = tmp_path / "shared" / "links.json"
    target.parent.mkdir()
    target.write_text("{}")
    links_path.parent.mkdir(parents=True)
    links_path.symlink_to(target)

    s = JSONStore(links_path, watch=False)
    s.create(new_link("gh", "https://github.com"))
    assert links_path.is_symlink()
    assert json.loads(target.read_text())["gh"]["url"] == "https://github.com"
    assert not any(p.name.endswith(".tmp") for p in target.parent.iterdir())


def test_file_mode_is_preserved(store, links_path):
    store.create(new_link("a", "https://a"))
    links_path.chmod(0o600)
    store.create(new_link("b", "https://b"))
    assert links_path.stat().st_mode & 0o777 == 0o600


def test_empty_file_loads_as_empty(links_path):
    links_path.parent.mkdir(parents=True)
    links_path.write_text("")
    assert JSONStore(links_path, watch=False).list() == []


def test_whitespace_only_file_loads_as_empty(links_path):
    links_path.parent.mkdir(parents=True)
    links_path.write_text("  \n")
    assert JSONStore(links_path, watch=False).list() == []


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[1, 2, 3]",
        '{"a": {"alias": "a"}}',
        '{"a": "https://a"}',
    ],
)
def test_reload_of_malformed_file_keeps_state(store, links_path, content):
    store.create(new_link("a", "https://a"))
    before = _links_by_alias(store)
    links_path.write_text(content)
    with pytest.raises(CorruptStoreError):
        store.reload()
    assert _links_by_alias(store) == before


def test_reload_of_non_utf8_file_keeps_state(store, links_path):
    store.create(new_link("a", "https://a"))
    links_path.write_bytes(b"\xff\xfe\x00garbage")
    with pytest.raises(CorruptStoreError):
        store.reload()
    assert store.get("a").url == "https://a"


def test_reload_picks_up_external_content(store, links_path):
    store.create(new_link("a", "https://a"))
    doc = {"z": {"alias": "z", "url": "https://z", "created_at": "", "updated_at": ""}}
    links_path.write_text(json.dumps(doc))
    store.reload()
    assert [link.alias for link in store.list()] == ["z"]


def test_null_optionals_in_file_load_as_empty(links_path):
    links_path.parent.mkdir(parents=True)
    doc = {"a": {"alias": "a", "url": "https://a", "description": None, "category": None, "created_at": None}}
    links_path.write_text(json.dumps(doc))
    link = JSONStore(links_path, watch=False).get("a")
    assert (link.description, link.category, link.created_at, link.updated_at) == ("", "", "", "")


def test_reload_of_empty_file_clears_state(store, links_path):
    store.create(new_link("a", "https://a"))
    links_path.write_text("")
    store.reload()
    assert store.list() == []


# --- persist failure rolls back -------------------------------------------


@pytest.fixture
def failing_write(monkeypatch):
    def _boom(path, text):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(store_mod, "_atomic_write", _boom)


def test_create_rolls_back_on_persist_failure(store, failing_write):
    with pytest.raises(OSError):
        store.create(new_link("gh", "https://github.com"))
    assert "gh" not in store


def test_update_rolls_back_on_persist_failure(store, monkeypatch):
    store.create(new_link("gh", "https://old"))

    def _boom(path, text):
        raise OSError(13, "Permission denied")

    monkeypatch.setattr(store_mod, "_atomic_write", _boom)
    with pytest.raises(OSError):
        store.update(Link(alias="gh", url="https://new"))
    assert store.get("gh").url == "https://old"


def test_delete_rolls_back_on_persist_failure(store, monkeypatch, links_path):
    store.create(new_link("gh", "https://github.com"))

    def _boom(path, text):
        raise OSError(13, "Permission denied")

    monkeypatch.setattr(store_mod, "_atomic_write", _boom)
    with pytest.raises(OSError):
        store.delete("gh")
    assert store.get("gh").url == "https://github.com"
    assert '"gh"' in links_path.read_text()


def test_save_surfaces_io_error(store, failing_write):
    with pytest.raises(OSError):
        store.save()


# --- concurrency ----------------------------------------------------------


def test_readers_run_concurrently(store):
    store.create(new_link("a", "https://a"))
    n = 4
    barrier = threading.Barrier(n, timeout=5)
    results = []
    errors = []

    def reader():
        try:
            with store._lock.read():
                # every reader must be inside the lock at once to pass the barrier
                barrier.wait()
                results.append(store._links["a"].url)
        except threading.BrokenBarrierError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=reader) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert errors == []
    assert results == ["https://a"] * n


def test_get_proceeds_while_another_reader_holds_lock(store):
    store.create(new_link("a", "https://a"))
    got = []
    with store._lock.read():
        t = threading.Thread(target=lambda: got.append(store.get("a").url))
        t.start()
        t.join(5)
    assert got == ["https://a"]


def test_writer_waits_for_reader(store):
    done = threading.Event()
    with store._lock.read():
        t = threading.Thread(target=lambda: (store.create(new_link("a", "https://a")), done.set()))
        t.start()
        assert not done.wait(0.2)
    t.join(5)
    assert done.is_set()
    assert "a" in store


def test_concurrent_creates_all_persist(store, links_path):
    n = 20

    def create(i):
        store.create(new_link(f"alias{i}", f"https://example.com/{i}"))

    threads = [threading.Thread(target=create, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert len(store) == n
    assert len(JSONStore(links_path, watch=False)) == n


def test_concurrent_duplicate_creates_exactly_one_wins(store):
    outcomes = []
    lock = threading.Lock()

    def create(i):
        try:
            store.create(new_link("same", f"https://{i}"))
        except AlreadyExistsError:
            result = "exists"
        else:
            result = "created"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=create, args=(i,)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert outcomes.count("created") == 1
    assert outcomes.count("exists") == 9
