"""JSON envelope shared by every route: ``{"status": "ok", ...}`` or ``{"status": "error", "error": {...}}``."""
import logging
from functools import wraps

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.responses import Response

from apps.fragments.errors import FragmentError

logger = logging.getLogger(__name__)


def create_success_response(data: dict | None = None) -> dict:
    return {'status': 'ok', **(data or {})}


def create_error_response(code: int, message: str) -> dict:
    return {'status': 'error', 'error': {'code': code, 'message': message}}


def error_response(code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(create_error_response(code, message), status_code=code, headers=headers)


def response_wrapper(view):
    """Wrap a view so dict results become success envelopes and failures become error envelopes.

    - FragmentError -> its ``code`` (400, 404, 415, 500, 503)
    - HTTPException -> its status code
    - anything else -> logged, 500
    Views returning a Response are passed through untouched.
    """

    @wraps(view)
    async def wrapper(*args, **kwargs):
        try:
            result = await view(*args, **kwargs)
        except HTTPException as e:
            return error_response(e.status_code, str(e.detail), headers=e.headers)
        except FragmentError as e:
            if e.code >= 500:
                logger.error(f"{view.__name__} failed: {e}")
            else:
                logger.warning(f"{view.__name__} rejected: {e}")
            return error_response(e.code, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error in {view.__name__}: {e}")
            return error_response(500, 'internal server error')

        if isinstance(result, Response):
            return result
        return JSONResponse(create_success_response(result))

    return wrapper
