"""
Routers package
FastAPI route handlers organized by domain
"""
from . import packages

__all__ = [
    "packages",
]
