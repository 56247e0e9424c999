"""Health check endpoint."""

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    config = request.app.state.config
    return JSONResponse(
        {
            "status": "ok",
            "agent_type": config.agent_type,
            "proxy_configured": config.proxy_upstream_url is not None,
        }
    )


health_routes = [
    Route("/health", health_check, methods=["GET"]),
]
