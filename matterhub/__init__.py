"""
matterhub - WebSocket bridge to chip-tool

Lets browser clients discover, commission, control and subscribe to Matter
devices through the chip-tool command line controller.

Example:
    >>> from matterhub.api import run_server
    >>> run_server(port=8080)
"""

__version__ = "1.0.0"

from .config import Config, get_config

__all__ = [
    "__version__",
    "Config",
    "get_config",
]
