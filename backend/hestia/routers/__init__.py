"""Hestia Policy Engine - API Routers"""
from .auth import router as auth_router
from .policies import router as policies_router
from .actors import router as actors_router

__all__ = [
    "auth_router",
    "policies_router",
    "actors_router",
]
