"""
VIGIL REST API.

FastAPI application exposing detection, claim building, audit and corpus queries.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
