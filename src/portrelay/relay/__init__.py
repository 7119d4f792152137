"""
Relay core.

Listeners feed a bounded intake queue, a dispatcher drains it and starts a
relay worker per accepted connection.
"""

from portrelay.relay.dispatcher import Dispatcher
from portrelay.relay.intake import IntakeQueue
from portrelay.relay.listener import Listener, open_listening_socket
from portrelay.relay.server import TunnelRelay
from portrelay.relay.worker import RelayWorker, pipe

__all__ = [
    "Dispatcher",
    "IntakeQueue",
    "Listener",
    "RelayWorker",
    "TunnelRelay",
    "open_listening_socket",
    "pipe",
]
