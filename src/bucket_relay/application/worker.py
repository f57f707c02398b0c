"""Background worker and process entry point.

The worker wires poller events to the file processor, runs the retry
sweep and heartbeat at the end of every cycle, and keeps the process
alive through unexpected errors: a worker that keeps retrying is
preferred over one that is down.

Usage:
    bucket-relay            # console script
    python -m bucket_relay.application.worker
"""

from __future__ import annotations

import signal
import sys
import threading
from typing import Optional

import uvicorn

from bucket_relay.adapters.inbound.rest_api import create_app
from bucket_relay.domain.entities import ObjectIdentity
from bucket_relay.infrastructure.config import get_config
from bucket_relay.infrastructure.container import Container
from bucket_relay.infrastructure.logging import attach_ledger_handler, get_logger, setup_logging
from bucket_relay.infrastructure.metrics import start_metrics_server
from bucket_relay.infrastructure.tracing import setup_tracing, shutdown_tracing

STOP_POLL_SECONDS = 1.0


class RelayWorker:
    """Drive the poller and route its events."""

    def __init__(self, container: Container):
        self.container = container
        self.poller = container.poller
        self.processor = container.processor
        self.logger = get_logger("worker")
        self._stop_requested = threading.Event()
        self._wire()

    def _wire(self) -> None:
        self.poller.on_new_object(self.handle_new_object)
        self.poller.on_error(self.handle_poll_error)
        self.poller.add_cycle_hook(self.container.sweeper.sweep)
        self.poller.add_cycle_hook(self.container.heartbeat.maybe_send)
        self.container.retry_scheduler.register_plateau_callback(self.container.heartbeat.alert_plateau)

    def handle_new_object(self, identity: ObjectIdentity) -> None:
        """Process one discovered object; failures never escape."""
        try:
            self.processor.process_file(identity)
        except Exception as exc:
            # Already in the retry backlog unless it was a validation failure
            self.logger.error(
                "file_processing_failed",
                bucket=identity.bucket,
                key=identity.key,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    def handle_poll_error(self, exc: Exception) -> None:
        """Log a cycle-level failure; the next cycle runs as scheduled."""
        self.logger.error("polling_service_error", error=str(exc), error_type=type(exc).__name__)

    def install_exception_hooks(self) -> None:
        """Log uncaught exceptions instead of letting them end the process."""

        def _sys_hook(exc_type, exc_value, exc_traceback):
            if issubclass(exc_type, KeyboardInterrupt):
                sys.__excepthook__(exc_type, exc_value, exc_traceback)
                return
            self.logger.error(
                "uncaught_exception",
                error=str(exc_value),
                error_type=exc_type.__name__,
                exc_info=(exc_type, exc_value, exc_traceback),
            )

        def _thread_hook(args: threading.ExceptHookArgs) -> None:
            if args.exc_type is SystemExit:
                return
            self.logger.error(
                "uncaught_thread_exception",
                thread=args.thread.name if args.thread else None,
                error=str(args.exc_value),
                error_type=args.exc_type.__name__,
                exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            )

        sys.excepthook = _sys_hook
        threading.excepthook = _thread_hook

    def start(self) -> None:
        self.logger.info("worker_starting")
        self.poller.start()
        self.logger.info("worker_started")

    def request_stop(self, signum: Optional[int] = None, frame=None) -> None:
        """Signal-handler compatible stop request."""
        name = signal.Signals(signum).name if signum is not None else "request"
        self.logger.info("shutdown_requested", signal=name)
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling; the in-flight cycle finishes first."""
        self.poller.stop(wait=True, timeout=timeout)
        self.logger.info("worker_stopped")

    def run_forever(self) -> None:
        """Start, block until a stop is requested, then stop."""
        self.start()
        while not self._stop_requested.wait(STOP_POLL_SECONDS):
            pass
        self.stop()


class ApiServer:
    """Run the operational REST API on a background thread."""

    def __init__(self, container: Container):
        server_config = container.config.server
        self._server = uvicorn.Server(
            uvicorn.Config(
                create_app(container),
                host=server_config.host,
                port=server_config.port,
                log_config=None,
            )
        )
        self._thread = threading.Thread(target=self._server.run, name="relay-api", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        self._thread.join(timeout)


def main() -> int:
    """Process entry point. Returns the exit status."""
    try:
        config = get_config()
    except Exception as exc:
        get_logger("worker").error("invalid_configuration", error=str(exc))
        return 1

    setup_logging(config)
    logger = get_logger("worker")

    try:
        config.require_complete()
        tracer = setup_tracing(config)
        container = Container.create(config=config, tracer=tracer)
    except Exception as exc:
        logger.error("startup_failed", error=str(exc), error_type=type(exc).__name__)
        return 1

    attach_ledger_handler(container.ledger, config.observability.persist_log_level)

    api: Optional[ApiServer] = None
    try:
        if config.observability.metrics_port:
            start_metrics_server(config.observability.metrics_port)
        if config.server.port:
            api = ApiServer(container)
            api.start()

        worker = RelayWorker(container)
        worker.install_exception_hooks()
        signal.signal(signal.SIGTERM, worker.request_stop)
        signal.signal(signal.SIGINT, worker.request_stop)

        worker.run_forever()
    except Exception as exc:
        logger.error("worker_failed", error=str(exc), error_type=type(exc).__name__)
        return 1
    finally:
        if api is not None:
            api.stop()
        container.close()
        shutdown_tracing()

    logger.info("worker_exited")
    return 0


if __name__ == "__main__":
    sys.exit(main())
