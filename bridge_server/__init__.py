"""
Bridge simulator session server.

Holds one authoritative game state per session, applies station actions
from connected bridge consoles and fans the result out to every console
in the session over WebSockets.
"""

__version__ = "0.3.0"
