"""Exception handlers rendering bridge errors as OpenAI error objects."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.exceptions import ProxyError, error_payload


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_payload(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProxyError, proxy_error_handler)
