# logger.py - Centralized logging configuration
import os
import logging
from logging.handlers import RotatingFileHandler


def setup_logger(name, log_file=None, level=logging.INFO, log_dir="logs", to_file=True):
    """Set up a logger with file rotation"""
    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    logger.setLevel(level)

    if to_file:
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        if not log_file:
            log_file = os.path.join(log_dir, f"{name}.log")

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10240,
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"
        ))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    # Console handler for development
    if os.environ.get("FLASK_ENV") != "production":
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(
            "%(name)s - %(levelname)s - %(message)s"
        ))
        logger.addHandler(console_handler)

    return logger


def setup_logging(app):
    """Attach the app and licensing loggers once the config is known."""
    to_file = not app.config.get("TESTING", False)
    log_dir = app.config.get("LOG_DIR", "logs")
    level = logging.DEBUG if app.debug else logging.INFO

    app_logger = setup_logger("app", level=level, log_dir=log_dir, to_file=to_file)
    # service modules log via getLogger(__name__) under "licensing.*"
    licensing_logger = setup_logger("licensing", level=level, log_dir=log_dir, to_file=to_file)

    for handler in app_logger.handlers:
        if handler not in app.logger.handlers:
            app.logger.addHandler(handler)
    app.logger.setLevel(level)

    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    return app_logger, licensing_logger
