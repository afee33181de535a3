
# fragments/routers.py
from fastapi import APIRouter
from utils.response_wrapper import response_wrapper
from .views import create_fragment, delete_fragment, list_fragments, retrieve_fragment, retrieve_fragment_info

router = APIRouter()

router.post("/v1/fragments", status_code=201)(response_wrapper(create_fragment))
router.get("/v1/fragments")(response_wrapper(list_fragments))
router.get("/v1/fragments/{fragment_id}")(response_wrapper(retrieve_fragment))
router.get("/v1/fragments/{fragment_id}/info")(response_wrapper(retrieve_fragment_info))
router.delete("/v1/fragments/{fragment_id}")(response_wrapper(delete_fragment))
