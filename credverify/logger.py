"""
Logging and run metrics for credverify.

Every module logs through the shared StructuredLogger returned by
get_logger(). Keyword arguments become a JSON context suffix, so a line
reads "Attempt completed | Context: {"request_id": ...}". The same object
counts OCR calls, attempt outcomes and swallowed side-effect failures; the
CLI prints that tally when a command ends.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _empty_metrics() -> dict:
    return {
        "ocr_calls": 0,
        "attempts_started": 0,
        "attempts_completed": 0,
        "attempts_failed": 0,
        "decisions": {},
        "errors_by_type": {},
        "side_effect_failures": {},
    }


def _bump(counter: dict, key: str):
    counter[key] = counter.get(key, 0) + 1


class StructuredLogger:
    """
    Console and daily-file logger with verification counters.

    Args:
        name: Name of the underlying ``logging`` logger
        level: Threshold for the console (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Where credverify_YYYYMMDD.log is written (default: logs/)
        enable_file: Write the daily file; it always records DEBUG and up
        enable_console: Echo to stdout at ``level``
    """

    def __init__(
        self,
        name: str = "credverify",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        threshold = getattr(logging, level.upper())
        self.logger = logging.getLogger(name)
        self.logger.setLevel(threshold)
        self.logger.handlers.clear()
        self.metrics = _empty_metrics()

        if enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(threshold)
            console.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT))
            self.logger.addHandler(console)

        if enable_file:
            directory = Path(log_dir) if log_dir is not None else Path("logs")
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / f"credverify_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(path, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt=DATE_FORMAT))
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # -- counters ------------------------------------------------------------

    def record_ocr_call(self):
        self.metrics["ocr_calls"] += 1

    def record_attempt_started(self):
        """An automated attempt was created and is about to run."""
        self.metrics["attempts_started"] += 1

    def record_attempt_completed(self, decision: str):
        """An attempt produced a match decision (APPROVED, PENDING_REVIEW or REJECTED)."""
        self.metrics["attempts_completed"] += 1
        _bump(self.metrics["decisions"], decision)

    def record_attempt_failed(self, error_type: str):
        """An attempt ended FAILED; ``error_type`` is its failure code, e.g. OCR_TRANSIENT."""
        self.metrics["attempts_failed"] += 1
        _bump(self.metrics["errors_by_type"], error_type)

    def record_side_effect_failure(self, effect: str):
        """An audit, credential or purge step failed and was logged instead of raised."""
        _bump(self.metrics["side_effect_failures"], effect)

    def get_metrics(self) -> dict:
        """Snapshot of the counters plus the share of completed attempts that approved."""
        snapshot = dict(self.metrics)
        completed = snapshot["attempts_completed"]
        approved = snapshot["decisions"].get("APPROVED", 0)
        snapshot["approval_rate"] = round(approved / completed, 3) if completed else 0.0
        return snapshot

    def log_metrics_summary(self):
        m = self.get_metrics()
        self.info("=== Verification Session Metrics ===")
        self.info(f"OCR Calls: {m['ocr_calls']}")
        self.info(
            f"Attempts: {m['attempts_completed']} completed, "
            f"{m['attempts_failed']} failed, {m['attempts_started']} started"
        )
        self.info(f"Approval rate: {m['approval_rate'] * 100:.1f}%")

        for title, counts in (
            ("Decisions:", m["decisions"]),
            ("Error Types:", m["errors_by_type"]),
            ("Side-effect failures:", m["side_effect_failures"]),
        ):
            if counts:
                self.info(title)
                for key, count in counts.items():
                    self.info(f"  {key}: {count}")


_global_logger: Optional[StructuredLogger] = None


def get_logger(name: str = "credverify", level: str = "INFO", **kwargs) -> StructuredLogger:
    """
    Return the process-wide logger, creating it on first use.

    Arguments only take effect on the call that creates it.
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)
    return _global_logger


def reset_logger():
    """Forget the process-wide logger so the next get_logger() builds a new one."""
    global _global_logger
    _global_logger = None
