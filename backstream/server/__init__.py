"""
Backstream HTTP API Server.

Usage:
    # Start server
    uvicorn backstream.server:app --reload

    # Or programmatically
    from backstream.server import app, create_app

    app = create_app()
"""

from backstream.server.app import app, create_app

__all__ = ["app", "create_app"]
