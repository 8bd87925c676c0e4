from __future__ import annotations

from fastapi.routing import APIRoute
from starlette.requests import Request

from tutordesk.request_context import current_endpoint


class EndpointNameRoute(APIRoute):
    """Labels slow-query log lines with the route template that issued them."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()
        route_path = self.path

        async def labelled_handler(request: Request):
            token = current_endpoint.set(f'{request.method} {route_path}')
            try:
                return await original_handler(request)
            finally:
                current_endpoint.reset(token)

        return labelled_handler
