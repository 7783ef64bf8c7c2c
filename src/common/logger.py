"""
Logging for the workflow engine.

Every line a run emits carries a short run tag and, inside a step, the step
name, so interleaved runs for different owners can be told apart:

    2026-03-01 12:00:00 [INFO] src.services.auto_job_workflow: [run:3f2a9c1d] [recommend] 4/9 scored

Set WORKFLOW_DEBUG=true to drop the workflow loggers to DEBUG.
"""

import json
import logging
import os
import sys
from typing import Any, MutableMapping, Optional, Tuple

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _debug_requested() -> bool:
    return os.getenv("WORKFLOW_DEBUG", "false").lower() in ("1", "true", "yes")


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; message text is escaped properly."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class PipelineLogger(logging.LoggerAdapter):
    """Logger adapter that prefixes messages with the run and step they belong to."""

    def __init__(self, name: str, run_id: Optional[str] = None, layer: Optional[str] = None):
        logger = logging.getLogger(name)
        if _debug_requested():
            logger.setLevel(logging.DEBUG)
        super().__init__(logger, {"run_id": run_id, "layer": layer})

    @property
    def run_id(self) -> Optional[str]:
        return self.extra["run_id"]

    @property
    def layer(self) -> Optional[str]:
        return self.extra["layer"]

    def with_layer(self, layer: str) -> "PipelineLogger":
        return PipelineLogger(self.logger.name, self.run_id, layer)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        tags = []
        if self.run_id:
            tags.append(f"[run:{self.run_id[:8]}]")
        if self.layer:
            tags.append(f"[{self.layer}]")
        if tags:
            msg = f"{' '.join(tags)} {msg}"
        return msg, kwargs


def setup_logging(level: str = "INFO", format: str = "simple") -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Level name; unknown names fall back to INFO
        format: "simple" for human-readable lines, "json" for one object per line
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    if format == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)


def get_logger(name: str, run_id: Optional[str] = None, layer: Optional[str] = None) -> PipelineLogger:
    return PipelineLogger(name, run_id, layer)
