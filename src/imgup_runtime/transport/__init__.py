"""Transports for the protocol engine.

Only stdio is provided: the engine runs as a subprocess of the GUI.
"""

from .stdio_adapter import StdioProtocolServer, configure_logging, run_stdio_server

__all__ = [
    "StdioProtocolServer",
    "configure_logging",
    "run_stdio_server",
]
