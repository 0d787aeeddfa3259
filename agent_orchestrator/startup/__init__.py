"""
Startup - service wiring and FastAPI app setup.
"""

from .container import OrchestratorServices, build_services
from .server_config import create_fastapi_app, setup_cors

__all__ = [
    "OrchestratorServices",
    "build_services",
    "create_fastapi_app",
    "setup_cors",
]
