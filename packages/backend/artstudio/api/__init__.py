from .configurations import router as configurations_router
from .generate import router as generate_router
from .mockups import router as mockups_router

__all__ = [
    "configurations_router",
    "generate_router",
    "mockups_router",
]
