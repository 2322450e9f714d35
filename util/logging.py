"""
Structured operation logging for the retrieval core.
Every record is a single line: operation, status and a details dict.
"""

import logging
import os
from typing import Any, Dict, Optional


class StructuredLogger:
    """Structured logger for ingestion, retrieval and index persistence."""

    def __init__(self, name: str = "ragcore"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_ingest(self, record_id: Optional[int], text: str, status: str = "success", details: Dict[str, Any] = None):
        """Log ingestion of one chunk."""
        log_details = {"record_id": record_id, "chars": len(text)}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation("pipeline.ingest", status, log_details, level)

    def log_retrieval(self, query: str, k: int, hits: int, status: str = "success", details: Dict[str, Any] = None):
        """Log a retrieval call; the query is truncated."""
        log_details = {
            "query": query[:50] + "..." if len(query) > 50 else query,
            "k": k,
            "hits": hits,
        }
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation("pipeline.retrieve", status, log_details, level)

    def log_index_persist(self, operation: str, path: str, status: str = "success", details: Dict[str, Any] = None):
        """Log index save/load."""
        log_details = {"path": path}
        if details:
            log_details.update(details)

        level = logging.INFO if status == "success" else logging.ERROR
        self.log_operation(f"index.{operation}", status, log_details, level)

    def log_index_rebuild(self, records: int, indexed: int, start_time: float, end_time: float, status: str = "success"):
        """Log a rebuild or reconcile pass over the record store."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {
            "records": records,
            "indexed": indexed,
            "duration_ms": duration_ms,
        }
        self.log_operation("index.rebuild", status, log_details)

    # Plain messages
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)


# Global logger instance
logger = StructuredLogger()
