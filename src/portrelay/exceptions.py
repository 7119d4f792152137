"""Relay exception classes."""


class RelayError(Exception):
    """Base exception for relay operations."""

    pass


class ConfigFormatError(RelayError):
    """Tunnel configuration string is malformed."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(
            f"invalid tunnel config: {value} "
            "(expected format: 0.0.0.0:9090>postgres:5432)"
        )


class NoTunnelsError(RelayError):
    """No valid tunnel configuration was resolved."""

    def __init__(self):
        super().__init__("no tunnel configurations are set")


class BindError(RelayError):
    """Listener could not open its local address."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(f"failed to open local listener on {address}: {message}")


class AcceptError(RelayError):
    """Listener accept loop failed after a successful bind."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(
            f"failed to accept incoming connection on {address}: {message}"
        )


class DialError(RelayError):
    """Remote address of a tunnel could not be reached."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(f"failed to open downstream connection to {address}: {message}")


class RelayIOError(RelayError):
    """Copying bytes failed in the middle of a session."""

    def __init__(self, message: str, direction: str):
        self.direction = direction
        super().__init__(f"tunnel error occurred ({direction}): {message}")
