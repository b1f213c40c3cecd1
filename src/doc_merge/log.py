"""Logging setup shared by the web entry point and scripts."""

import logging


def configure_logging(level: int | str = logging.INFO, *, force: bool = False) -> None:
    """Initialise the root logger once with a terse format.

    Pass ``force=True`` to reconfigure from tests or alternative entry points.
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
