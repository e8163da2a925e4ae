from tvtracker.routers.tv import router as tv_router
from tvtracker.routers.account import router as account_router
from tvtracker.routers.auth import router as auth_router
from tvtracker.routers.plex import router as plex_router
from tvtracker.routers.metrics import router as metrics_router

__all__ = ["tv_router", "account_router", "auth_router", "plex_router", "metrics_router"]
