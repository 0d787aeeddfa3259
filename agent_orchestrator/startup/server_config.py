"""
FastAPI app factory with CORS for the operator dashboard and agent runners.
"""

from typing import Any, Callable, List, Optional, Sequence

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__

API_TITLE = "Agent Orchestrator API"


def create_fastapi_app(
    lifespan: Optional[Callable[[FastAPI], Any]] = None,
    cors_origins: Optional[Sequence[str]] = None,
) -> FastAPI:
    """
    Args:
        lifespan: Lifespan context manager factory
        cors_origins: Allowed origins; ``None`` or ``["*"]`` allows any
    """
    app = FastAPI(title=API_TITLE, version=__version__, lifespan=lifespan)
    setup_cors(app, cors_origins)
    return app


def setup_cors(app: FastAPI, origins: Optional[Sequence[str]] = None) -> List[str]:
    """
    Install the CORS middleware and return the effective origin list.

    Credentials are only allowed for an explicit origin list; browsers
    reject them together with a wildcard.
    """
    allowed = [origin for origin in (origins or []) if origin] or ["*"]
    wildcard = "*" in allowed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else allowed,
        allow_credentials=not wildcard,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )
    return allowed
