"""
Relay configuration.

A global Config instance that can be modified at runtime, plus the loader
that resolves tunnel specs from ``TUNNEL_<n>`` environment variables.
"""

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from portrelay.exceptions import ConfigFormatError
from portrelay.models.enums import FailurePolicy, LogLevel
from portrelay.models.tunnel import TunnelSpec, parse_tunnel_spec
from portrelay.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RelayConfig:
    """Relay process configuration."""

    # Intake Configuration
    INTAKE_QUEUE_SIZE: int = 5  # Accepted connections waiting for dispatch
    LISTEN_BACKLOG: int = 100

    # Relay Configuration
    READ_CHUNK_SIZE: int = 65536
    CLOSE_TIMEOUT_SECONDS: float = 1.0  # Wait for transports to finish closing

    # Tunnel Configuration
    TUNNEL_ENV_PREFIX: str = "TUNNEL_"
    FAILURE_POLICY: FailurePolicy = FailurePolicy.FAIL_FAST

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO


# Global config instance
config = RelayConfig()


def parse_tunnel_specs(values: Iterable[str], log=None) -> list[TunnelSpec]:
    """
    Parse tunnel strings, skipping (and logging) malformed entries.

    Args:
        values: Strings in LOCAL_ADDR>REMOTE_ADDR form.
        log: Logger for skipped entries (module logger by default).
    """
    log = log or logger
    specs = []
    for value in values:
        try:
            specs.append(parse_tunnel_spec(value))
        except ConfigFormatError as e:
            log.error(f"failed to parse tunnel config: {e}")
    return specs


def iter_env_tunnels(
    environ: Mapping[str, str] | None = None, prefix: str | None = None
):
    """Yield TUNNEL_1, TUNNEL_2, ... values until the first missing index."""
    environ = os.environ if environ is None else environ
    prefix = prefix or config.TUNNEL_ENV_PREFIX
    index = 1
    while True:
        value = environ.get(f"{prefix}{index}")
        if value is None:
            return
        yield value
        index += 1


def load_tunnel_specs(
    environ: Mapping[str, str] | None = None,
    extra: Iterable[str] = (),
    log=None,
) -> list[TunnelSpec]:
    """
    Resolve the tunnel specs of this process.

    Environment entries come first, followed by any extra strings (e.g. from
    the command line). Malformed entries are skipped.
    """
    values = list(iter_env_tunnels(environ))
    values.extend(extra)
    return parse_tunnel_specs(values, log=log)
