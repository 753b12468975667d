"""An HTTP upstream that answers slowly, for testing proxy timeouts."""
from .app import create_app
from .duration import InvalidDuration, format_duration, parse_duration
from .lifecycle import InFlight, Shutdown
from .server import SlowServer, main

__version__ = "0.1.0"

__all__ = [
    "InFlight",
    "InvalidDuration",
    "Shutdown",
    "SlowServer",
    "create_app",
    "format_duration",
    "main",
    "parse_duration",
]
