"""Allow running PortRelay with ``python -m portrelay``."""

from portrelay.cli.main import run

if __name__ == "__main__":
    run()
