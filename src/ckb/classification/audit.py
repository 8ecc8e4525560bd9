"""Asynchronous secret-access audit trail."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from ..models import AccessLogEntry
from ..storage import GraphStoreBase

audit_logger = logging.getLogger("ckb.audit")


class AuditSink:
    """Writes access log entries on a background pool.

    ``record`` never blocks the caller and never raises: a failed write is
    reported on the ``ckb.audit`` logger and dropped.
    """

    def __init__(self, store: GraphStoreBase, workers: int = 2):
        self.store = store
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="ckb-audit")

    def record(self, entry: AccessLogEntry) -> Future | None:
        try:
            return self._executor.submit(self._write, entry)
        except RuntimeError:
            # Pool already shut down
            audit_logger.error(
                f"Dropped access log for {entry.article} secret '{entry.secret_key}' "
                f"(requester {entry.requester_id}, granted={entry.granted}): audit sink closed"
            )
            return None

    def _write(self, entry: AccessLogEntry) -> None:
        try:
            self.store.append_access_log(entry)
        except Exception:
            audit_logger.error(
                f"Failed to write access log for {entry.article} secret '{entry.secret_key}' "
                f"(requester {entry.requester_id}, granted={entry.granted})",
                exc_info=True,
            )
        else:
            audit_logger.debug(
                f"{entry.requester_id} L{entry.user_level} -> {entry.article}:{entry.secret_key} "
                f"L{entry.required_level} granted={entry.granted}"
            )

    def close(self, wait: bool = True) -> None:
        """Stop accepting entries; with ``wait`` block until pending ones are written."""
        self._executor.shutdown(wait=wait)
