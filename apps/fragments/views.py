import logging

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse, Response

from apps.fragments import registry
from apps.fragments.schema import FragmentInfoOut, FragmentOut
from apps.fragments.services import FragmentService
from config.settings import API_URL, MAX_FRAGMENT_SIZE
from utils.response_wrapper import create_success_response

logger = logging.getLogger(__name__)


def _require_owner(request: Request) -> str:
    """The owner id OwnerMiddleware derived from the authenticated user."""
    owner_id = getattr(request.state, 'owner_id', None)
    if not owner_id:
        raise HTTPException(status_code=401, detail='unauthorized')
    return owner_id


def _service(request: Request) -> FragmentService:
    return request.app.state.fragments


def _split_extension(raw_id: str) -> tuple[str, str | None]:
    if '.' not in raw_id:
        return raw_id, None
    fragment_id, extension = raw_id.rsplit('.', 1)
    return fragment_id, extension


async def create_fragment(request: Request):
    owner_id = _require_owner(request)
    content_type = request.headers.get('content-type', '')
    logger.info(f"POST /v1/fragments owner={owner_id} type={content_type!r}")

    if not registry.is_supported(content_type):
        raise HTTPException(status_code=415, detail=f'unsupported type: {content_type or "none"}')
    declared = request.headers.get('content-length')
    if declared and declared.isdigit() and int(declared) > MAX_FRAGMENT_SIZE:
        raise HTTPException(status_code=413, detail='fragment too large')
    data = await request.body()
    if len(data) > MAX_FRAGMENT_SIZE:
        raise HTTPException(status_code=413, detail='fragment too large')

    fragment = (await _service(request).create_fragment(owner_id, content_type, data)).unwrap()
    logger.debug(f"created {fragment!r}")
    return JSONResponse(
        create_success_response({'fragment': FragmentOut.from_fragment(fragment).dump()}),
        status_code=201,
        headers={'Location': f'{API_URL}/v1/fragments/{fragment.id}'},
    )


async def list_fragments(request: Request, expand: int = 0):
    owner_id = _require_owner(request)
    logger.info(f"GET /v1/fragments owner={owner_id} expand={expand}")
    fragments = (await _service(request).list_fragments(owner_id, expand=expand == 1)).unwrap()
    if expand == 1:
        fragments = [FragmentOut.from_fragment(fragment).dump() for fragment in fragments]
    logger.debug(f"owner {owner_id} has {len(fragments)} fragments")
    return {'fragments': fragments}


async def retrieve_fragment(request: Request, fragment_id: str):
    owner_id = _require_owner(request)
    fragment_id, extension = _split_extension(fragment_id)
    logger.info(f"GET /v1/fragments/{fragment_id} owner={owner_id} extension={extension}")
    service = _service(request)

    if extension is None:
        fragment = (await service.get_fragment(owner_id, fragment_id)).unwrap()
        data = (await service.read_fragment_bytes(owner_id, fragment_id)).unwrap()
        return Response(content=data, media_type=fragment.type)

    data, media_type = (await service.read_fragment_converted(owner_id, fragment_id, extension)).unwrap()
    return Response(content=data, media_type=media_type)


async def retrieve_fragment_info(request: Request, fragment_id: str):
    owner_id = _require_owner(request)
    logger.info(f"GET /v1/fragments/{fragment_id}/info owner={owner_id}")
    fragment = (await _service(request).get_fragment(owner_id, fragment_id)).unwrap()
    return {'fragment': FragmentInfoOut.from_fragment(fragment).dump()}


async def delete_fragment(request: Request, fragment_id: str):
    owner_id = _require_owner(request)
    logger.info(f"DELETE /v1/fragments/{fragment_id} owner={owner_id}")
    (await _service(request).delete_fragment(owner_id, fragment_id)).unwrap()
    return {}
