"""
Logging utility for the resolution pipeline using loguru.

This module provides:
- Colorful console output for interactive runs
- Optional rotating file sink (enabled with PODGRAPH_LOG_DIR)
- A separate metrics sink for structured batch summaries
- Timing helpers for pipeline stages
"""

import os
import sys
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

# Remove default handler
logger.remove()

LOG_LEVEL = os.getenv("PODGRAPH_LOG_LEVEL", "INFO").upper()

# Console handler (colorful, human-readable)
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=LOG_LEVEL,
    colorize=True,
    filter=lambda record: not record["extra"].get("metrics", False),
)

_log_dir_env = os.getenv("PODGRAPH_LOG_DIR")
if _log_dir_env:
    LOG_DIR: Optional[Path] = Path(_log_dir_env)
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    logger.add(
        LOG_DIR / "podgraph_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
        level="DEBUG",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
    )

    # Metrics file (structured run summaries)
    logger.add(
        LOG_DIR / "metrics_{time:YYYY-MM-DD}.log",
        format="{message}",
        level="INFO",
        filter=lambda record: record["extra"].get("metrics", False),
        rotation="10 MB",
        retention="30 days",
    )
else:
    LOG_DIR = None


class PipelineTimer:
    """Track timing for pipeline stages."""

    def __init__(self, pipeline_name: str):
        self.pipeline_name = pipeline_name
        self.stages: dict[str, float] = {}
        self.start_time: Optional[float] = None
        self.current_stage: Optional[str] = None
        self.stage_start: Optional[float] = None

    def start(self) -> "PipelineTimer":
        """Start the pipeline timer."""
        self.start_time = time.perf_counter()
        logger.info(f"Pipeline '{self.pipeline_name}' started")
        return self

    def stage(self, name: str) -> "PipelineTimer":
        """Start timing a new stage."""
        now = time.perf_counter()

        if self.current_stage and self.stage_start:
            elapsed = now - self.stage_start
            self.stages[self.current_stage] = elapsed
            logger.debug(f"Stage '{self.current_stage}' completed in {elapsed:.2f}s")

        self.current_stage = name
        self.stage_start = now
        logger.info(f"Starting stage: {name}")
        return self

    def end(self) -> dict:
        """End the pipeline and return timing summary."""
        now = time.perf_counter()

        if self.current_stage and self.stage_start:
            self.stages[self.current_stage] = now - self.stage_start

        total_time = now - (self.start_time or now)

        summary = {
            "pipeline": self.pipeline_name,
            "total_seconds": round(total_time, 3),
            "stages": {k: round(v, 3) for k, v in self.stages.items()},
            "timestamp": datetime.now().isoformat(),
        }
        logger.bind(metrics=True).info(f"PIPELINE_METRICS: {summary}")

        for stage_name, duration in self.stages.items():
            logger.info(f"  {stage_name}: {duration:.2f}s")
        logger.info(f"Pipeline '{self.pipeline_name}' completed in {total_time:.2f}s")

        return summary


@contextmanager
def timer(operation: str):
    """Context manager for timing operations."""
    start = time.perf_counter()
    logger.debug(f"Starting: {operation}")
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug(f"Completed: {operation} in {elapsed:.2f}s")


def log_metrics(name: str, metrics: dict) -> None:
    """Emit a structured metrics line to the metrics sink."""
    logger.bind(metrics=True).info(f"{name}: {metrics}")


__all__ = [
    "logger",
    "PipelineTimer",
    "timer",
    "log_metrics",
]
