import enum
import logging
from typing import Any, Dict, Optional, Tuple, Union

import jsonschema
from pythonjsonlogger import jsonlogger

logger = logging.getLogger(__name__)

PLAIN_LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] [%(provider)s] %(message)s"
JSON_LOG_FIELDS = "%(asctime)s %(levelname)s %(name)s %(provider)s %(message)s"


class LogLevel(enum.IntEnum):
    """How much of a generation run reaches the logs."""

    NONE = 0
    ERRORS = 1
    TURNS = 2
    PAYLOADS = 3
    DEBUG = 4

    def to_logging_level(self) -> int:
        return {
            LogLevel.NONE: logging.CRITICAL + 10,
            LogLevel.ERRORS: logging.ERROR,
            LogLevel.TURNS: logging.INFO,
            LogLevel.PAYLOADS: logging.DEBUG,
            LogLevel.DEBUG: logging.DEBUG,
        }[self]


class GenerationLogFilter(logging.Filter):
    """
    Fills in the fields the promptwire formatters reference.

    Adapter log calls pass ``extra={"provider": ...}``; records from other
    libraries have no provider and get "-". Root-logger records are renamed
    so the ``[name]`` column is never just "root".
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "provider", None) is None:
            record.provider = "-"
        if record.name in ("", "root"):
            record.name = "DefaultLogger"
        return True


def init_logging(
    level: Union[int, LogLevel] = logging.INFO,
    clear_existing_handlers: bool = True,
    json_format: bool = False,
) -> None:
    """
    Attach one console handler to the root logger.

    Args:
        level: A ``logging`` level or a LogLevel.
        clear_existing_handlers: Drop handlers installed by earlier calls so
                                 re-running setup does not duplicate output.
        json_format: One JSON object per record (python-json-logger)
                     instead of plain text.
    """
    if isinstance(level, LogLevel):
        level = level.to_logging_level()

    root = logging.getLogger()
    if clear_existing_handlers:
        while root.handlers:
            handler = root.handlers[0]
            root.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler()
    handler.addFilter(GenerationLogFilter())
    handler.setFormatter(
        jsonlogger.JsonFormatter(JSON_LOG_FIELDS) if json_format else logging.Formatter(PLAIN_LOG_FORMAT)
    )
    root.addHandler(handler)
    root.setLevel(level)

    logger.info(f"promptwire logging at {logging.getLevelName(level)} ({'json' if json_format else 'plain'})")


def describe_validation_error(error: jsonschema.exceptions.ValidationError) -> str:
    location = "/".join(str(part) for part in error.absolute_path)
    if location:
        return f"Structured output invalid at '{location}': {error.message}"
    return f"Structured output invalid: {error.message}"


def validate_data(data: Any, schema: Optional[Dict[str, Any]]) -> Tuple[bool, Optional[str]]:
    """
    Check ``data`` against a JSON schema.

    Returns (True, None) when valid or when there is no schema, else
    (False, message) describing the most relevant failure.
    """
    if schema is None:
        return True, None

    try:
        validator_class = jsonschema.validators.validator_for(schema)
        validator_class.check_schema(schema)
    except jsonschema.exceptions.SchemaError as e:
        logger.error(f"Invalid output schema: {e.message}")
        return False, f"Invalid output schema: {e.message}"

    error = jsonschema.exceptions.best_match(validator_class(schema).iter_errors(data))
    if error is None:
        return True, None

    message = describe_validation_error(error)
    logger.debug(f"{message}; data={str(data)[:500]}")
    return False, message
