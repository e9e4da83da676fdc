import time

import pytest

from golink.store import JSONStore


@pytest.fixture
def links_path(tmp_path):
    return tmp_path / "data" / "links.json"


@pytest.fixture
def store(links_path):
    s = JSONStore(links_path, watch=False)
    yield s
    s.close()


def wait_for(predicate, timeout=5.0, interval=0.05):
    """Poll predicate until it returns truthy or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
