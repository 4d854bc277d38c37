"""JSON logging configuration for the enrollment scripts."""

import logging

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "device_enrollment"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with a focused field set.

    Keeps timestamp, level, message, exc_info, logger name, funcName and lineno.
    """

    allowed_fields = frozenset(
        {"timestamp", "level", "message", "exc_info", "name", "funcName", "lineno"}
    )

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        for key in [key for key in log_record if key not in self.allowed_fields]:
            log_record.pop(key)


def setup_logger(level: int = logging.INFO) -> logging.Logger:
    """Attach a JSON handler to the package logger.

    Library modules log under ``device_enrollment.*`` so one handler here
    covers all of them. Calling this twice does not add a second handler.

    Args:
        level: Minimum level to emit

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        CustomJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(name)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(handler)
    logger.propagate = False

    return logger
