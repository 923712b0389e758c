"""Command-line entry point: ``python -m rfidzone`` / ``rfidzone``.

All reader, backend and state settings come from the environment (see
:meth:`rfidzone.config.GatewayConfig.from_env`); the command line only
narrows the zone list and sets verbosity.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rfidzone.config import GatewayConfig
from rfidzone.exceptions import RfidConfigError, RfidLockError
from rfidzone.gateway import ReaderGateway

_LOG = logging.getLogger("rfidzone")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rfidzone",
        description="Forward UHF RFID reader detections to the presence backend.",
    )
    parser.add_argument(
        "--zone",
        action="append",
        default=None,
        help="Only supervise this zone (repeatable). Defaults to every zone in RFID_ZONES.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level.",
    )
    return parser.parse_args(argv)


async def _run(config: GatewayConfig) -> None:
    gateway = ReaderGateway(config)
    gateway.install_signal_handlers()
    await gateway.run()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = GatewayConfig.from_env().select_zones(args.zone)
        if not config.zones:
            raise RfidConfigError("no zones configured")
        asyncio.run(_run(config))
    except RfidLockError as exc:
        _LOG.error("Another gateway is already running: %s", exc)
        return 1
    except RfidConfigError as exc:
        _LOG.error("Invalid configuration: %s", exc)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
