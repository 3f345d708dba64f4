from fastapi import APIRouter

from copilot_runtime.platform.server.routes.base import base_router
from copilot_runtime.platform.server.routes.chat import chat_router

root = APIRouter()
root.include_router(base_router)
root.include_router(chat_router)
