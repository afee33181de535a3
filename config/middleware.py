# middleware.py
import hashlib

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from config.settings import OWNER_HEADER


def hash_owner(user: str) -> str:
    """Owner ids are the sha256 of the authenticated user, never the raw email."""
    return hashlib.sha256(user.strip().lower().encode('utf-8')).hexdigest()


class OwnerMiddleware(BaseHTTPMiddleware):
    """Attach ``request.state.owner_id`` from the user the authenticating proxy forwarded."""

    def __init__(self, app, header: str = OWNER_HEADER):
        super().__init__(app)
        self.header = header

    async def dispatch(self, request: Request, call_next):
        user = request.headers.get(self.header)
        request.state.owner_id = hash_owner(user) if user and user.strip() else None

        response: Response = await call_next(request)
        return response
