import asyncio
import signal
from typing import Any

from loguru import logger

from delivery.app.composition import create_worker_dependencies
from delivery.app.config.settings import Settings
from delivery.app.core import SERVICE_NAME
from delivery.app.messaging.consumer import create_message_handler
from delivery.app.observability.logging import configure_logging


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def run_worker(settings: Settings, shutdown: asyncio.Event | None = None) -> None:
    shutdown = shutdown or asyncio.Event()
    deps = create_worker_dependencies(settings)

    def request_shutdown() -> None:
        if not shutdown.is_set():
            _log("shutdown_signal")
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await deps.connect()
        _log("worker_started", queue=settings.queue_name, target=settings.target_url)
        await deps.message_queue.consume(
            settings.queue_name,
            create_message_handler(deps.delivery_service),
            stop_event=shutdown,
        )
    finally:
        await deps.close()
        _log("worker_stopped")


def main() -> None:
    settings = Settings()
    audit_logger = configure_logging(settings)
    try:
        asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        _log("worker_interrupted")
    except Exception as e:
        logger.bind(service_name=SERVICE_NAME, event="worker_failed").exception("worker failed: {}", e)
        raise
    finally:
        audit_logger.flush()


if __name__ == "__main__":
    main()
