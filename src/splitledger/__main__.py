"""Entry point for ``python -m splitledger``."""

import asyncio

from splitledger.api import run_server


def main() -> None:
    """Launch the SplitLedger HTTP API."""
    try:
        asyncio.run(run_server())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
