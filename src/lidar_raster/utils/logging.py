"""Logging setup for the lidar_raster package."""

import logging
import sys

PACKAGE_LOGGER = "lidar_raster"


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Set up logging for the package.

    Args:
        verbose: If True, set level to DEBUG; otherwise INFO.

    Returns:
        The package logger.
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()
    logger.addHandler(console_handler)
    return logger
