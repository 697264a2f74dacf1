import logging
from typing import Optional

_LOGGER_INITIALISED = False

AUDIT_LOGGER_NAME = "ledger.audit"


def configure_root_logger(level: Optional[str] = None) -> None:
    global _LOGGER_INITIALISED
    if _LOGGER_INITIALISED:
        return

    if level is None:
        from .config import get_settings
        level = get_settings().log_level

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.addHandler(handler)
    _LOGGER_INITIALISED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_root_logger()
    return logging.getLogger(name)


def audit(action: str, actor_id: Optional[str], target_type: str, target_id: object, **metadata: object) -> None:
    """Record an admin-visible state change on the audit logger."""
    details = " ".join(f"{key}={value}" for key, value in sorted(metadata.items()))
    get_logger(AUDIT_LOGGER_NAME).info(
        "action=%s actor=%s target=%s:%s %s", action, actor_id, target_type, target_id, details
    )
