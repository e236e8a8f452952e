"""
Queue worker that derives photo variants.

Pulls photo ids from the durable RabbitMQ queue, runs the shared
`derive_variants` pipeline, and acknowledges each delivery once every size
has been attempted. Deliveries are handled one at a time; run more worker
processes on the same queue for throughput.

Run with ``python -m photo_resizer.queue_worker`` or ``photo-resizer-worker``.
"""

from __future__ import annotations

import logging
import signal
from typing import Any, Optional

import pika
from pika.adapters.blocking_connection import BlockingChannel

from . import config
from .broker import ConnectionSupervisor
from .mongo import close_client, get_photo_store
from .photos import PhotoStore
from .pipeline import DerivationReport, DerivationState, derive_variants

logger = logging.getLogger(__name__)


class QueueWorker:
    """Message handler bound to one photo store."""

    def __init__(self, store: PhotoStore, settings: Optional[config.Settings] = None):
        self._store = store
        self._settings = settings or config.get_settings()

    def handle_delivery(
        self,
        channel: BlockingChannel,
        method: Any,
        properties: pika.BasicProperties,
        body: bytes,
    ) -> DerivationReport:
        """
        Process one delivery and settle it with the broker.

        Dropped messages (unreadable original, undecodable image, unexpected
        error) are acked under the `drop` policy and rejected without requeue
        under `dead_letter`, so the broker can route them to the dead-letter
        exchange. Everything else is acked, even when some sizes failed.
        """
        photo_id = body.decode("utf-8", errors="replace").strip()
        logger.info("Received photo %s (delivery %s)", photo_id, method.delivery_tag)
        try:
            report = derive_variants(photo_id, self._store, self._settings)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure deriving variants for photo %s", photo_id)
            report = DerivationReport(photo_id=photo_id, state=DerivationState.DROPPED, error=str(exc))

        if report.dropped and self._settings.failure_policy == "dead_letter":
            channel.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
            logger.warning("Dead-lettered photo %s: %s", photo_id, report.error)
            return report

        channel.basic_ack(delivery_tag=method.delivery_tag)
        if not report.dropped:
            report.state = DerivationState.ACKNOWLEDGED
        return report


def run_worker(
    store: PhotoStore,
    settings: Optional[config.Settings] = None,
    supervisor: Optional[ConnectionSupervisor] = None,
) -> None:
    settings = settings or config.get_settings()
    supervisor = supervisor or ConnectionSupervisor(settings)
    worker = QueueWorker(store, settings)

    def _shutdown(signum, _frame):
        logger.info("Received signal %s, stopping consumer", signum)
        supervisor.stop()

    previous_handler = signal.signal(signal.SIGTERM, _shutdown)
    try:
        supervisor.run(worker.handle_delivery)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        supervisor.close()
        signal.signal(signal.SIGTERM, previous_handler)


def main() -> None:
    settings = config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    try:
        run_worker(get_photo_store(), settings)
    finally:
        close_client()


if __name__ == "__main__":
    main()
