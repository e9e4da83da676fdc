"""golink: personal go/links redirector backed by a single JSON file.

Layout:
    ~/.config/golink/
        config.toml       # optional settings (storage_dir, [server])
        links.json        # alias → link records, pretty-printed

The JSONStore keeps links.json in memory, persists every mutation before
returning, and reloads automatically when the file is edited by hand or by
another golink process.
"""

from golink.config import GolinkConfig, load_config
from golink.models import Link, new_link
from golink.store import AlreadyExistsError, CorruptStoreError, JSONStore, NotFoundError, StoreError

__all__ = [
    "AlreadyExistsError",
    "CorruptStoreError",
    "GolinkConfig",
    "JSONStore",
    "Link",
    "NotFoundError",
    "StoreError",
    "load_config",
    "new_link",
]
