"""API Routes Module"""
from .rate_limit_routes import rate_limit_router

__all__ = ['rate_limit_router']
