"""Parley - API Routers"""
from .imports import router as imports_router
from .conversations import router as conversations_router
from .agreements import router as agreements_router

__all__ = [
    "imports_router",
    "conversations_router",
    "agreements_router",
]
