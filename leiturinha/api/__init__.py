"""API package - REST routes for Leiturinha"""

from leiturinha.api.routes import router, set_services, get_services

__all__ = ["router", "set_services", "get_services"]
