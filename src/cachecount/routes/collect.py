"""
Collection routes: the tracking pixel and the session-hit endpoint.
"""

import base64
import logging

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from ..core.collect import Collector, MissingSiteIdError, parse_collect_params
from ..core.hits import format_http_date

logger = logging.getLogger(__name__)

# 1x1 transparent GIF
PIXEL_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

# The body must never be served from cache, but the browser still keeps
# Last-Modified and sends it back as If-Modified-Since.
TRACKING_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Expires": "Mon, 01 Jan 1990 00:00:00 GMT",
    "Tk": "N",  # not tracking
}

ALLOWED_METHODS = ["GET", "HEAD"]


def create_collect_router(collector: Collector) -> APIRouter:
    """Create the ``/collect`` and ``/cache`` routes.

    Args:
        collector: Collector that classifies hits and writes data points
    """
    router = APIRouter(tags=["collect"])

    @router.api_route("/collect", methods=ALLOWED_METHODS)
    async def collect(request: Request, background_tasks: BackgroundTasks):
        """Record a pageview and return the tracking pixel."""
        try:
            params = parse_collect_params(request.query_params)
        except MissingSiteIdError as e:
            return PlainTextResponse(str(e), status_code=400)

        result = collector.process(params, request.headers)

        # Runs after the response is sent; failures are logged by the collector
        background_tasks.add_task(collector.write, result.data_point)

        headers = dict(TRACKING_HEADERS)
        headers["Last-Modified"] = format_http_date(result.next_token)

        return Response(content=PIXEL_GIF, media_type="image/gif", headers=headers)

    @router.api_route("/collect", methods=["POST", "PUT", "PATCH", "DELETE"])
    async def collect_method_not_allowed():
        return PlainTextResponse(
            "Method not allowed",
            status_code=405,
            headers={"Allow": ", ".join(ALLOWED_METHODS)},
        )

    @router.get("/cache")
    async def cache(request: Request):
        """Report the session hit count to the tracking client.

        The client has no storage of its own, so it asks here before
        requesting the pixel and forwards the answer as ``ht``/``v``/``s``.
        """
        state = collector.check_cache(request.headers.get("if-modified-since"))

        return JSONResponse(
            {"ht": state.hits, "v": state.new_visitor, "s": state.new_session},
            headers={
                "Last-Modified": format_http_date(state.next_token),
                "Cache-Control": "no-cache, must-revalidate",
            },
        )

    return router
