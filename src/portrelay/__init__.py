"""
PortRelay - TCP port forwarder.

Accepts connections on configured local addresses and relays each one
to a fixed remote address.
"""

__version__ = "0.1.0"
