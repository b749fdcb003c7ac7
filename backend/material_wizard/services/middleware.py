"""Request tracing for the wizard API: request ids, timing headers, access log."""
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from material_wizard.services.logging_config import request_id_var

logger = logging.getLogger("material-wizard.middleware")

# Probes and metric scrapes would drown the access log
QUIET_PATHS = {"/health", "/metrics"}

# Upstream proxies may already have assigned an id; keep theirs if it is sane
_MAX_INBOUND_ID_LENGTH = 128


def _request_id(request: Request) -> str:
    inbound = request.headers.get("X-Request-ID", "").strip()
    if inbound and len(inbound) <= _MAX_INBOUND_ID_LENGTH:
        return inbound
    return str(uuid.uuid4())


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id for the duration of the request (visible to every log
    line through the logging context), returns it as X-Request-ID alongside
    X-Process-Time, and writes one access-log record per request. The access
    record names the wizard session when the route resolved one.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _request_id(request)
        request.state.request_id = request_id
        rid_token = request_id_var.set(request_id)
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            request_id_var.reset(rid_token)

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if request.url.path not in QUIET_PATHS:
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code}",
                extra={
                    "http_method": request.method,
                    "http_path": request.url.path,
                    "http_status": response.status_code,
                    "request_id": request_id,
                    "session_id": getattr(request.state, "session_id", None),
                    "duration_ms": duration_ms,
                },
            )
        return response
