from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp


def cors_headers(origin: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Max-Age": "86400",
    }


class FixedOriginCorsMiddleware(BaseHTTPMiddleware):
    """Attach the same CORS headers to every response, preflight included."""

    def __init__(self, app: ASGIApp, origin: str) -> None:
        super().__init__(app)
        self.headers = cors_headers(origin)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=self.headers)
        response: Response = await call_next(request)
        response.headers.update(self.headers)
        return response
