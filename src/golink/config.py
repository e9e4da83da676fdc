"""GolinkConfig: per-user configuration for golink.

Default layout:

    ~/.config/golink/         # or $GOLINK_CONFIG_DIR
        config.toml           # optional settings
        .env                  # optional: GOLINK_* overrides
        links.json            # link store (unless storage_dir points elsewhere)

config.toml example:

    [golink]
    storage_dir = "/home/me/Dropbox/golink"   # default: the config dir

    [server]
    host = "0.0.0.0"
    port = 80
    not_found_url = ""    # redirect here for unknown aliases; empty = 404

Environment variables override the file: GOLINK_STORAGE_DIR, GOLINK_HOST,
GOLINK_PORT, GOLINK_NOT_FOUND_URL. The process environment wins over .env.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_CONFIG_FILENAME = "config.toml"
_LINKS_FILENAME = "links.json"
_ENV_PREFIX = "GOLINK_"

_DEFAULT_HOST = "0.0.0.0"  # noqa: S104
_DEFAULT_PORT = 80


class ConfigError(Exception):
    """config.toml exists but could not be parsed."""


def default_config_dir() -> Path:
    env_dir = os.environ.get("GOLINK_CONFIG_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".config" / "golink"


@dataclass
class ServerConfig:
    host: str = _DEFAULT_HOST
    port: int = _DEFAULT_PORT
    not_found_url: str = ""


@dataclass
class GolinkConfig:
    """Resolved configuration."""

    config_dir: Path
    storage_dir: Path
    config_file: Path | None = None     # None when no config.toml was found
    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def links_path(self) -> Path:
        return self.storage_dir / _LINKS_FILENAME

    def ensure_dirs(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def settings(self) -> dict[str, Any]:
        """Flat view of every setting, for `golink config view`."""
        return {
            "storage_dir": str(self.storage_dir),
            "server.host": self.server.host,
            "server.port": self.server.port,
            "server.not_found_url": self.server.not_found_url,
        }


def _golink_env(config_dir: Path) -> dict[str, str]:
    """GOLINK_* settings from config_dir/.env, overlaid by the process environment.

    .env lines are `KEY=value`, optionally prefixed with `export`. Blank lines,
    `#` comments and keys without the GOLINK_ prefix are skipped. One pair of
    matching quotes around a value is removed.
    """
    env: dict[str, str] = {}
    env_file = config_dir / ".env"
    if env_file.exists():
        for line in env_file.read_text().splitlines():
            line = line.strip().removeprefix("export ").lstrip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key, value = key.strip(), value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            env[key] = value
    env.update(os.environ)
    return {k: v for k, v in env.items() if k.startswith(_ENV_PREFIX)}


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        msg = f"{path}: {exc}"
        raise ConfigError(msg) from exc


def load_config(config_dir: Path | str | None = None) -> GolinkConfig:
    """Load config.toml (if any) from config_dir, then apply environment overrides."""
    cfg_dir = Path(config_dir).expanduser() if config_dir else default_config_dir()
    config_path = cfg_dir / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    config_file: Path | None = None
    if config_path.exists():
        raw = _read_toml(config_path)
        config_file = config_path

    env = _golink_env(cfg_dir)

    gl_section = raw.get("golink", {})
    srv_section = raw.get("server", {})

    storage = env.get("GOLINK_STORAGE_DIR") or gl_section.get("storage_dir") or ""
    storage_dir = Path(storage).expanduser() if storage else cfg_dir
    if not storage_dir.is_absolute():
        storage_dir = cfg_dir / storage_dir

    port_raw = env.get("GOLINK_PORT") or srv_section.get("port", _DEFAULT_PORT)
    try:
        port = int(port_raw)
    except (TypeError, ValueError) as exc:
        msg = f"invalid port: {port_raw!r}"
        raise ConfigError(msg) from exc

    return GolinkConfig(
        config_dir=cfg_dir,
        storage_dir=storage_dir,
        config_file=config_file,
        server=ServerConfig(
            host=env.get("GOLINK_HOST") or str(srv_section.get("host", _DEFAULT_HOST)),
            port=port,
            not_found_url=env.get("GOLINK_NOT_FOUND_URL") or str(srv_section.get("not_found_url", "")),
        ),
    )


_STORAGE_DIR_RE = re.compile(r"^\s*storage_dir\s*=.*$", re.MULTILINE)


def _toml_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def set_storage_dir(config_dir: Path | str, path: Path | str) -> Path:
    """Point storage_dir at path (made absolute) in config.toml. Returns the absolute path.

    Edits the existing line in place so comments and other settings survive;
    writes a fresh config.toml if there is none.
    """
    cfg_dir = Path(config_dir).expanduser()
    storage_dir = Path(os.path.abspath(Path(path).expanduser()))
    line = f"storage_dir = {_toml_string(str(storage_dir))}"

    config_path = cfg_dir / _CONFIG_FILENAME
    if not config_path.exists():
        cfg_dir.mkdir(parents=True, exist_ok=True)
        config_path.write_text(_default_config(line))
        return storage_dir

    text = config_path.read_text()
    _read_toml(config_path)  # refuse to edit a file we cannot parse
    if _STORAGE_DIR_RE.search(text):
        text = _STORAGE_DIR_RE.sub(lambda _m: line, text, count=1)
    elif re.search(r"^\[golink\]\s*$", text, re.MULTILINE):
        text = re.sub(r"^\[golink\]\s*$", lambda _m: f"[golink]\n{line}", text, count=1, flags=re.MULTILINE)
    else:
        text = f"[golink]\n{line}\n\n" + text
    config_path.write_text(text)
    return storage_dir


def _default_config(storage_line: str) -> str:
    return f"""\
[golink]
{storage_line}

# [server]
# host = "0.0.0.0"
# port = 80
# not_found_url = ""   # redirect here for unknown aliases; empty = plain 404
"""
