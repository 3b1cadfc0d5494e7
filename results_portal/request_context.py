from __future__ import annotations

from contextvars import ContextVar

from fastapi.routing import APIRoute
from starlette.requests import Request


current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')


def actor_label(request: Request) -> str:
    user = getattr(request.state, 'auth_user', None)
    if not user:
        return 'anonymous'
    return f"{user.get('role') or 'unknown'}:{user.get('user_id') or 0}"


def endpoint_label(request: Request) -> str:
    return getattr(request.state, 'endpoint_label', None) or f'{request.method} {request.url.path}'


class EndpointNameRoute(APIRoute):
    """Labels every query and log line of a request with its route template."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()

        async def custom_handler(request: Request):
            label = f'{request.method} {self.path}'
            request.state.endpoint_label = label
            token = current_endpoint.set(label)
            try:
                return await original_handler(request)
            finally:
                current_endpoint.reset(token)

        return custom_handler
