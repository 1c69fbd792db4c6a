from fastapi import APIRouter

from twelveimg.api.endpoints import cron, download, galleries, storage, uploads

api_router = APIRouter()
api_router.include_router(uploads.router, tags=["Uploads"])
api_router.include_router(galleries.router, tags=["Galleries"])
api_router.include_router(download.router, tags=["Download"])
api_router.include_router(cron.router, tags=["Cron"])
api_router.include_router(storage.router, tags=["Local Storage"])
