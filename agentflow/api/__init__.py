"""
API package - FastAPI routes and schemas.
"""

from agentflow.api.routes import debug, websocket

__all__ = ["debug", "websocket"]
