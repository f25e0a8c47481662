from src.alwayscare.api.routers.auth import router as auth_router
from src.alwayscare.api.routers.images import router as images_router
from src.alwayscare.api.routers.analysis import router as analysis_router

__all__ = ["auth_router", "images_router", "analysis_router"]
