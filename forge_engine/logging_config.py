"""Structured logging configuration for testforge."""
import contextvars
import logging
import sys
import uuid

import structlog

run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "run_id", default=""
)

WORKFLOW_LOGGER = "forge.workflows"


def new_run_id() -> str:
    """Generate a new pipeline run ID."""
    return str(uuid.uuid4())


def add_run_id(logger, method_name, event_dict):
    """Structlog processor to add the current run ID."""
    rid = run_id_var.get("")
    if rid:
        event_dict["run_id"] = rid
    return event_dict


class RunIdFilter(logging.Filter):
    """Expose the current run ID to stdlib format strings."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get("") or "-"
        return True


def configure_logging(level: int | str = logging.INFO, alerts_only: bool = False):
    """Configure stdlib logging and structlog.

    In alerts-only mode the workflow loggers are raised to WARNING so that
    step chatter disappears and only alerts (and real problems) remain.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    # force=True so a handler is installed even if basicConfig already ran
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s run=%(run_id)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    for handler in logging.root.handlers:
        handler.addFilter(RunIdFilter())

    logging.getLogger(WORKFLOW_LOGGER).setLevel(
        logging.WARNING if alerts_only else logging.NOTSET
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_run_id,
            structlog.dev.ConsoleRenderer() if level <= logging.DEBUG else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )
