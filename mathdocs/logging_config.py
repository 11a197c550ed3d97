"""
logging_config.py — Sets up the ``mathdocs`` logger.
"""
import logging
import sys


def setup_logging(level=logging.INFO, log_file=None):
    """
    Configure the logger for the 'mathdocs' namespace.

    Args:
        level: logging level, either an int or a name such as 'DEBUG'.
        log_file: optional path to also write logs to.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger('mathdocs')
    logger.setLevel(level)

    # Re-running setup (tests, app factory) must not duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug('Logging initialized.')
    return logger
