"""
Standalone reconciliation worker.

Runs ReconciliationJob passes on a fixed interval against the configured
stores and exposes Prometheus metrics. Stops cleanly on SIGINT/SIGTERM.
"""
import argparse
import json
import logging
import signal
import threading

from prometheus_client import start_http_server

from vote_engine.config import Config
from vote_engine.engine import VotingEngine

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ReconciliationWorker:
    """Owns an engine and runs its reconciliation job until told to stop."""

    def __init__(self, engine: VotingEngine, interval: float, metrics_port: int = None):
        self.engine = engine
        self.interval = interval
        self.metrics_port = metrics_port
        self.shutdown_event = threading.Event()

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.shutdown_event.set()

    def run(self):
        if self.metrics_port:
            start_http_server(self.metrics_port)
            logger.info(f"Prometheus metrics server started on port {self.metrics_port}")

        self.engine.reconciliation.start(self.interval)
        self.shutdown_event.wait()

    def shutdown(self):
        logger.info("Shutting down reconciliation worker...")
        self.engine.close()
        logger.info("Reconciliation worker shutdown complete")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Rebuild vote counters from the vote log')
    parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single pass, print the report as JSON and exit'
    )
    parser.add_argument(
        '--interval',
        type=float,
        default=Config.RECONCILE_INTERVAL_SECONDS,
        help=f'Seconds between passes (default: {Config.RECONCILE_INTERVAL_SECONDS})'
    )
    parser.add_argument(
        '--backend',
        default=Config.STORE_BACKEND,
        help=f'Store backend (default: {Config.STORE_BACKEND})'
    )
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("Starting Reconciliation Worker")
    logger.info(f"Backend: {args.backend}")
    logger.info(f"Interval: {args.interval}s")
    logger.info(f"Repair: {Config.RECONCILE_REPAIR}")
    logger.info(f"Grace period: {Config.RECONCILE_GRACE_SECONDS}s")
    logger.info("=" * 60)

    engine = VotingEngine.from_config(args.backend)

    if args.once:
        try:
            report = engine.reconciliation.run_once()
            print(json.dumps(report.to_dict(), indent=2))
        finally:
            engine.close()
        return 0 if report.clean else 1

    worker = ReconciliationWorker(engine, args.interval, Config.METRICS_PORT)
    try:
        worker.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        worker.shutdown()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
