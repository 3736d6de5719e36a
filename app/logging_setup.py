from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from audit.logger import AUDIT_LOGGER_NAME

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: dict[str, Any]) -> None:
    lconf = config.get("logging", {})
    level_name = str(lconf.get("level", "INFO") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)

    audit_path = str(lconf.get("audit_log_path", "") or "").strip()
    if not audit_path:
        return
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    target = Path(audit_path).resolve()
    for handler in audit_logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == target:
            return
    target.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(target, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(file_handler)
