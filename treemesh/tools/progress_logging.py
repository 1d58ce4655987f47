import logging

logger = logging.getLogger("treemesh")


def configure_logging(level=logging.INFO) -> None:
    """Attach a single stream handler to the package logger."""
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", "%H:%M:%S"))
        logger.addHandler(handler)
    logger.setLevel(level)


def log_progress(enable_progress_prints: bool, message: str) -> None:
    if enable_progress_prints:
        logger.info(message)
