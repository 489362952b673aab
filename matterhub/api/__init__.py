"""
HTTP glue: FastAPI app, routes and the uvicorn runner.
"""

from .server import HubServer, create_app, get_server, run_server

__all__ = ["HubServer", "create_app", "get_server", "run_server"]
