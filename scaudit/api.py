"""HTTP surface: route table over a threaded standard-library server."""

import json
import logging
import re
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Tuple
from urllib.parse import parse_qs, urlsplit

from scaudit.chain import list_chains
from scaudit.config import AuditConfig
from scaudit.errors import AuditNotFoundError, ValidationError, err, error_envelope, ok
from scaudit.persistence import HISTORY_FILTERS, AuditStore
from scaudit.pipeline import AuditPipeline

logger = logging.getLogger(__name__)

Response = Tuple[int, Dict[str, Any]]

AUDIT_ID_ROUTE = re.compile(r'^/api/audit/([A-Za-z0-9_\-]+)$')


def _int_param(query: Dict[str, str], name: str, default: int) -> int:
    raw = query.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"'{name}' must be a non-negative integer")
    if value < 0:
        raise ValidationError(f"'{name}' must be a non-negative integer")
    return value


class AuditAPI:
    """Maps (method, path, query, body) onto pipeline and store calls.

    Transport-free so it can be driven directly from tests; AuditRequestHandler
    is the thin HTTP adapter on top.
    """

    def __init__(self, pipeline: AuditPipeline, store: AuditStore, config: AuditConfig | None = None):
        self.pipeline = pipeline
        self.store = store
        self.config = config or pipeline.config
        self.routes: Dict[Tuple[str, str], Callable[[Dict[str, str], Any], Response]] = {
            ('POST', '/api/audit/contract'): self.audit_contract,
            ('POST', '/api/audit/address'): self.audit_address,
            ('GET', '/api/audit/history'): self.history,
            ('GET', '/api/audit/statistics'): self.statistics,
            ('GET', '/api/audit/chains'): self.chains,
            ('GET', '/api/health'): self.health,
        }

    def handle(self, method: str, path: str, query: Dict[str, str] | None = None, body: Any = None) -> Response:
        query = query or {}
        handler = self.routes.get((method, path))
        try:
            if handler is not None:
                return handler(query, body)

            match = AUDIT_ID_ROUTE.match(path)
            if match and path not in {p for _, p in self.routes}:
                if method != 'GET':
                    return 405, err("METHOD_NOT_ALLOWED", f"{method} not allowed on {path}")
                return self.get_audit(match.group(1))

            if any(p == path for _, p in self.routes):
                return 405, err("METHOD_NOT_ALLOWED", f"{method} not allowed on {path}")
            return 404, err("NOT_FOUND", f"No route for {method} {path}")
        except Exception as e:
            status, payload = error_envelope(e)
            if status >= 500:
                logger.error(f"{method} {path} failed: {e}")
            return status, payload

    # --- handlers ---

    @staticmethod
    def _body(body: Any) -> Dict[str, Any]:
        if body is None:
            return {}
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    def audit_contract(self, query: Dict[str, str], body: Any) -> Response:
        body = self._body(body)
        options = body.get('options') if isinstance(body.get('options'), dict) else {}
        report = self.pipeline.audit_contract(
            body.get('contractCode'),
            contract_name=options.get('contractName'),
        )
        return 200, ok(report.to_wire())

    def audit_address(self, query: Dict[str, str], body: Any) -> Response:
        body = self._body(body)
        report = self.pipeline.audit_address(
            body.get('contractAddress'),
            body.get('chain') or 'ethereum',
        )
        return 200, ok(report.to_wire())

    def history(self, query: Dict[str, str], body: Any) -> Response:
        limit = _int_param(query, 'limit', self.config.history_default_limit)
        offset = _int_param(query, 'offset', 0)
        limit = min(limit, self.config.history_max_limit)
        filters = {k: query[k] for k in HISTORY_FILTERS if query.get(k)}
        return 200, ok(self.store.history(limit=limit, offset=offset, filters=filters))

    def statistics(self, query: Dict[str, str], body: Any) -> Response:
        return 200, ok(self.store.statistics())

    def chains(self, query: Dict[str, str], body: Any) -> Response:
        return 200, ok({'chains': list_chains(self.config)})

    def health(self, query: Dict[str, str], body: Any) -> Response:
        return 200, ok({'status': 'ok'})

    def get_audit(self, audit_id: str) -> Response:
        record = self.store.get(audit_id)
        if record is None:
            raise AuditNotFoundError(f"Audit not found: {audit_id}")
        return 200, ok(record)


# =============================================================================
# HTTP ADAPTER
# =============================================================================

class AuditRequestHandler(BaseHTTPRequestHandler):
    api: AuditAPI

    def _dispatch(self, method: str) -> None:
        parts = urlsplit(self.path)
        query = {k: v[0] for k, v in parse_qs(parts.query).items()}

        body = None
        length = int(self.headers.get('Content-Length') or 0)
        if length:
            raw = self.rfile.read(length)
            try:
                body = json.loads(raw)
            except (json.JSONDecodeError, UnicodeDecodeError):
                self._send(400, err("INVALID_JSON", "Request body is not valid JSON"))
                return

        status, payload = self.api.handle(method, parts.path, query, body)
        self._send(status, payload)

    def _send(self, status: int, payload: Dict[str, Any]) -> None:
        data = json.dumps(payload).encode('utf-8')
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.send_header('Content-Length', str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self) -> None:
        self._dispatch('GET')

    def do_POST(self) -> None:
        self._dispatch('POST')

    def do_PUT(self) -> None:
        self._dispatch('PUT')

    def do_DELETE(self) -> None:
        self._dispatch('DELETE')

    def log_message(self, format: str, *args: Any) -> None:
        logger.info(f"{self.address_string()} {format % args}")


def make_server(api: AuditAPI, host: str = '127.0.0.1', port: int = 8080) -> ThreadingHTTPServer:
    handler = type('BoundAuditRequestHandler', (AuditRequestHandler,), {'api': api})
    return ThreadingHTTPServer((host, port), handler)


def serve(api: AuditAPI, host: str = '127.0.0.1', port: int = 8080) -> None:
    server = make_server(api, host, port)
    logger.info(f"Audit API listening on http://{host}:{port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down audit API")
    finally:
        server.server_close()
