"""Logging configuration."""
import logging
import sys
import time


def setup_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Set third-party loggers to WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


def log_api_timing(service: str, operation: str, started_at: float, success: bool) -> float:
    """Log latency of an upstream call started at ``started_at`` (time.perf_counter)."""
    elapsed_ms = (time.perf_counter() - started_at) * 1000
    level = logging.INFO if success else logging.WARNING
    logging.getLogger("app.timing").log(
        level,
        f"[API TIMING] {service} {operation} - {elapsed_ms:.0f}ms - success: {success}",
    )
    return elapsed_ms
