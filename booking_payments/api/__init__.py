"""FastAPI application and routes."""
from .dependencies import ServiceContainer, build_services
from .main import create_app

__all__ = ["ServiceContainer", "build_services", "create_app"]
