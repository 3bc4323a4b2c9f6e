"""Route class for the billing routers: unexpected failures surface as ExternalError."""

import logging
from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException

from coachlatam.errors import AppError, ExternalError

logger = logging.getLogger(__name__)


class BillingRoute(APIRoute):
    """APIRoute whose handler converts anything outside the error taxonomy into ExternalError."""

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def billing_route_handler(request: Request) -> Response:
            try:
                return await handler(request)
            except (AppError, HTTPException, RequestValidationError):
                raise
            except Exception as e:
                logger.exception("Unexpected error on %s %s", request.method, request.url.path)
                raise ExternalError("Internal server error") from e

        return billing_route_handler
