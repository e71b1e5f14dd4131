"""Route handlers for the Web API."""

from fe1prep.web.routes.health import router as health_router
from fe1prep.web.routes.progress import lessons_router
from fe1prep.web.routes.progress import router as progress_router
from fe1prep.web.routes.simulations import router as simulations_router

__all__ = [
    "health_router",
    "lessons_router",
    "progress_router",
    "simulations_router",
]
