"""HTTP redirect server for go links.

Routes:
    GET    /                   → index of all links, grouped by category
    GET    /info               → link count + service info
    GET    /<alias>            → 302 to the link's URL (or to not_found_url / 404)
    GET    /api/links          → [{"alias": ..., "url": ...}, ...]
    GET    /api/links/<alias>  → {"alias": ..., "url": ...}
    POST   /api/links          → create; body {"alias", "url", "description"?, "category"?}
    PUT    /api/links/<alias>  → update given fields
    DELETE /api/links/<alias>  → delete
"""

from __future__ import annotations

import html as _html
import json
import logging
import signal
import threading
import time
import urllib.parse
from dataclasses import replace
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any

from golink.models import Link, check_url, new_link
from golink.store import AlreadyExistsError, NotFoundError, StoreError

if TYPE_CHECKING:
    from golink.store import JSONStore

logger = logging.getLogger("golink.server")

_API_PREFIX = "/api/links"
_EDITABLE_FIELDS = ("url", "description", "category")
# Characters left as-is in a Location header; everything else (non-ASCII,
# spaces, CR/LF) is percent-encoded. '%' is kept so existing escapes survive.
_LOCATION_SAFE = ":/?#[]@!$&'()*+,;=%~"


def safe_location(url: str) -> str:
    """Percent-encode url so it is a single-line, ASCII header value."""
    return urllib.parse.quote(url, safe=_LOCATION_SAFE)

# ─── Rendering ────────────────────────────────────────────────────────────────

_STYLE = """
body { font-family: monospace, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }
h1, h2 { color: #333; }
pre { white-space: pre; line-height: 1.5; }
a { text-decoration: none; color: #0066cc; }
a:hover { text-decoration: underline; }
.stats { display: flex; gap: 20px; }
.stat-box { flex: 1; padding: 15px; background: #f5f5f5; border-radius: 5px; text-align: center; }
.stat-number { font-size: 24px; font-weight: bold; margin: 10px 0; }
"""


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{_html.escape(title)}</title>
<style>{_STYLE}</style>
</head>
<body>
{body}
</body>
</html>"""


def render_tree(links: list[Link]) -> str:
    """Draw links as a category tree; categories lower-cased, everything sorted."""
    categories: dict[str, list[Link]] = {}
    for link in links:
        cat = link.category.lower() if link.category else "uncategorized"
        categories.setdefault(cat, []).append(link)

    lines: list[str] = []
    cats = sorted(categories)
    for i, cat in enumerate(cats):
        last_cat = i == len(cats) - 1
        lines.append(("└── " if last_cat else "├── ") + _html.escape(cat))
        indent = "    " if last_cat else "│   "
        members = sorted(categories[cat], key=lambda link: link.alias)
        for j, link in enumerate(members):
            branch = "└── " if j == len(members) - 1 else "├── "
            url = _html.escape(link.url, quote=True)
            lines.append(f'{indent}{branch}{_html.escape(link.alias)} → <a href="{url}">{url}</a>')
    return "\n".join(lines)


def _render_index(links: list[Link], base_url: str) -> str:
    parts = [
        "<h1>Go Links Service</h1>",
        f"<p>Use this service by navigating to <code>{_html.escape(base_url)}/&lt;alias&gt;</code></p>",
        "<h2>Available Links</h2>",
    ]
    if not links:
        parts.append("<p>No links available. Add some using the CLI tool.</p>")
    else:
        parts.append(f"<pre>{render_tree(links)}</pre>")
    return _page("Go Links Service", "\n".join(parts))


def _render_info(count: int, base_url: str) -> str:
    body = f"""<h1>Go Links Service - Info</h1>
<div class="stats">
  <div class="stat-box">
    <div>Total Links</div>
    <div class="stat-number">{count}</div>
  </div>
</div>
<h2>Service Information</h2>
<ul>
  <li>Base URL: {_html.escape(base_url)}</li>
  <li>Storage: JSON File</li>
</ul>
<p><a href="/">Back to home</a></p>"""
    return _page("Go Links Service - Info", body)


# ─── HTTP handler ─────────────────────────────────────────────────────────────


class _BadRequestError(Exception):
    pass


class _Handler(BaseHTTPRequestHandler):
    # injected via make_handler()
    store: JSONStore
    not_found_url: str = ""
    base_url: str = ""

    _started: float = 0.0

    def handle_one_request(self) -> None:
        self._started = time.monotonic()
        super().handle_one_request()

    # -- routing ---------------------------------------------------------

    def _route(self) -> tuple[str, str | None]:
        """Return (path, api_alias). api_alias is "" for /api/links, None outside the API."""
        path = urllib.parse.unquote(urllib.parse.urlparse(self.path).path)
        if path == _API_PREFIX or path == _API_PREFIX + "/":
            return path, ""
        if path.startswith(_API_PREFIX + "/"):
            return path, path[len(_API_PREFIX) + 1:].strip("/")
        return path, None

    def do_GET(self) -> None:
        path, api_alias = self._route()
        if api_alias == "":
            self._json([link.to_dict() for link in sorted(self.store.list(), key=lambda link: link.alias)])
        elif api_alias is not None:
            self._api_get(api_alias)
        elif path in ("/", ""):
            self._html(_render_index(self.store.list(), self.base_url))
        elif path == "/info":
            self._html(_render_info(len(self.store), self.base_url))
        else:
            self._follow(path.strip("/"))

    def do_POST(self) -> None:
        _, api_alias = self._route()
        if api_alias != "":
            self._error(HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed")
            return
        try:
            body = self._read_json()
            alias = body.get("alias")
            url = body.get("url")
            if not isinstance(alias, str) or not alias.strip("/"):
                raise _BadRequestError("alias is required")
            if not isinstance(url, str) or not url:
                raise _BadRequestError("url is required")
            fields = self._editable(body)
            link = new_link(
                alias.strip("/"),
                url,
                description=fields.get("description", ""),
                category=fields.get("category", ""),
            )
            self.store.create(link)
        except _BadRequestError as exc:
            self._error(HTTPStatus.BAD_REQUEST, str(exc))
        except AlreadyExistsError as exc:
            self._error(HTTPStatus.CONFLICT, str(exc))
        except (StoreError, OSError) as exc:
            logger.exception("create failed")
            self._error(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))
        else:
            logger.info("created %s -> %s", link.alias, link.url)
            self._json(link.to_dict(), HTTPStatus.CREATED)

    def do_PUT(self) -> None:
        _, api_alias = self._route()
        if not api_alias:
            self._error(HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed")
            return
        try:
            body = self._read_json()
            if body.get("alias", api_alias) != api_alias:
                raise _BadRequestError("alias cannot be changed; delete and re-create instead")
            changes = self._editable(body)
            link = replace(self.store.get(api_alias), **changes)
            self.store.update(link)
        except _BadRequestError as exc:
            self._error(HTTPStatus.BAD_REQUEST, str(exc))
        except NotFoundError as exc:
            self._error(HTTPStatus.NOT_FOUND, str(exc))
        except (StoreError, OSError) as exc:
            logger.exception("update failed")
            self._error(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))
        else:
            logger.info("updated %s", api_alias)
            self._json(link.to_dict())

    def do_DELETE(self) -> None:
        _, api_alias = self._route()
        if not api_alias:
            self._error(HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed")
            return
        try:
            self.store.delete(api_alias)
        except NotFoundError as exc:
            self._error(HTTPStatus.NOT_FOUND, str(exc))
        except (StoreError, OSError) as exc:
            logger.exception("delete failed")
            self._error(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))
        else:
            logger.info("deleted %s", api_alias)
            self.send_response(HTTPStatus.NO_CONTENT)
            self.end_headers()

    # -- handlers --------------------------------------------------------

    def _follow(self, alias: str) -> None:
        try:
            link = self.store.get(alias)
        except NotFoundError:
            if self.not_found_url:
                self._redirect(self.not_found_url)
            else:
                self._text(f"Go link not found: {alias}\n", HTTPStatus.NOT_FOUND)
            return
        self._redirect(link.url)

    def _api_get(self, alias: str) -> None:
        try:
            link = self.store.get(alias)
        except NotFoundError as exc:
            self._error(HTTPStatus.NOT_FOUND, str(exc))
            return
        self._json(link.to_dict())

    # -- request helpers -------------------------------------------------

    def _read_json(self) -> dict[str, Any]:
        header = self.headers.get("Content-Length", "0")
        try:
            length = int(header)
        except ValueError:
            length = -1
        if length < 0:
            raise _BadRequestError(f"invalid Content-Length: {header!r}")
        raw = self.rfile.read(length) if length else b""
        try:
            body = json.loads(raw or b"{}")
        except json.JSONDecodeError as exc:
            raise _BadRequestError(f"invalid JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise _BadRequestError("expected a JSON object")
        return body

    @staticmethod
    def _editable(body: dict[str, Any]) -> dict[str, str]:
        fields: dict[str, str] = {}
        for name in _EDITABLE_FIELDS:
            if name not in body:
                continue
            value = body[name]
            if not isinstance(value, str):
                raise _BadRequestError(f"{name} must be a string")
            fields[name] = value
        if "url" in fields:
            try:
                check_url(fields["url"])
            except ValueError as exc:
                raise _BadRequestError(str(exc)) from exc
        return fields

    # -- response helpers ------------------------------------------------

    def _send(self, body: bytes, content_type: str, status: int = HTTPStatus.OK) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _html(self, body: str, status: int = HTTPStatus.OK) -> None:
        self._send(body.encode(), "text/html; charset=utf-8", status)

    def _text(self, body: str, status: int = HTTPStatus.OK) -> None:
        self._send(body.encode(), "text/plain; charset=utf-8", status)

    def _json(self, payload: Any, status: int = HTTPStatus.OK) -> None:
        self._send(json.dumps(payload, indent=2).encode(), "application/json; charset=utf-8", status)

    def _error(self, status: int, message: str) -> None:
        self._json({"error": message}, status)

    def _redirect(self, loc: str) -> None:
        self.send_response(HTTPStatus.FOUND)
        self.send_header("Location", safe_location(loc))
        self.send_header("Content-Length", "0")
        self.end_headers()

    # -- logging ---------------------------------------------------------

    def log_request(self, code: int | str = "-", size: int | str = "-") -> None:  # noqa: ARG002
        elapsed_ms = (time.monotonic() - self._started) * 1000
        logger.info("%s %s %s %.1fms", self.command, self.path, getattr(code, "value", code), elapsed_ms)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("%s %s", self.address_string(), format % args)


def make_handler(store: JSONStore, not_found_url: str = "", base_url: str = "") -> type[_Handler]:
    class _Bound(_Handler):
        pass
    _Bound.store = store
    _Bound.not_found_url = not_found_url
    _Bound.base_url = base_url
    return _Bound


def make_server(store: JSONStore, host: str, port: int, not_found_url: str = "") -> ThreadingHTTPServer:
    """Bind the server without starting it. port=0 picks a free port."""
    handler = make_handler(store, not_found_url)
    server = ThreadingHTTPServer((host, port), handler)
    handler.base_url = f"http://localhost:{server.server_address[1]}"
    return server


def serve(store: JSONStore, host: str, port: int, not_found_url: str = "") -> None:
    """Serve until SIGINT/SIGTERM, then shut down cleanly. Must run on the main thread."""
    server = make_server(store, host, port, not_found_url)
    stop = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:  # noqa: ARG001
        logger.info("signal %d received, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    thread = threading.Thread(target=server.serve_forever, name="golink-http", daemon=True)
    thread.start()
    print(f"golink  →  http://{host}:{server.server_address[1]}  (Ctrl+C to stop)")
    try:
        while not stop.wait(0.5):
            pass
    finally:
        server.shutdown()
        server.server_close()
        thread.join()
        logger.info("server stopped")
