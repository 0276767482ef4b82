# fibcalc/worker.py
"""
Fibcalc Compute Worker - Process Entrypoint

Connects the result cache and the event channel, then runs the compute
worker until SIGTERM/SIGINT or until the channel gives up reconnecting.

Exit codes:
    0  clean shutdown on signal
    1  startup connection failure, channel permanently down, or crash

Run with: python -m fibcalc.worker
"""

from __future__ import annotations

import asyncio
import signal
import sys

from redis.exceptions import RedisError

from .core.config import get_settings, log_startup_diagnostics
from .core.errors import ChannelDownError, StoreUnavailableError
from .core.loader import load_environment
from .core.logging import configure_logging, get_logger
from .indexes import IndexPolicy
from .stores import build_cache, build_channel
from .workers.compute import ComputeWorker

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


async def start_worker() -> int:
    """Connect stores and run the worker loop; returns the exit code."""
    settings = get_settings()
    cache = build_cache(settings)
    channel = build_channel(settings)
    worker = ComputeWorker(
        cache=cache,
        channel=channel,
        policy=IndexPolicy(max_index=settings.FIB_MAX_INDEX),
        topic=settings.FIB_CHANNEL,
    )

    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()

    def _request_stop(sig: signal.Signals) -> None:
        logger.info(f"{sig.name} received, shutting down gracefully")
        stop_requested.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _request_stop, sig)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_requested.set))

    try:
        logger.info("Connecting to Redis...")
        await cache.connect()
        run_task = asyncio.create_task(worker.run(), name="compute-worker")
        stop_task = asyncio.create_task(stop_requested.wait(), name="stop-signal")

        done, _ = await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if run_task in done:
            stop_task.cancel()
            run_task.result()  # re-raises ChannelDownError
            return EXIT_OK

        run_task.cancel()
        try:
            await run_task
        except asyncio.CancelledError:
            pass
        return EXIT_OK

    except (StoreUnavailableError, RedisError, OSError) as e:
        logger.error(f"Failed to connect to Redis: {e}")
        return EXIT_FAILURE
    except ChannelDownError as e:
        logger.error(f"Event channel is down, exiting: {e}")
        return EXIT_FAILURE
    finally:
        await channel.stop()
        await cache.close()
        logger.info(
            f"Worker stopped (processed={worker.processed}, discarded={worker.discarded}, "
            f"failed={worker.failed})"
        )


def main() -> None:
    load_environment()
    settings = get_settings()
    configure_logging(
        level=settings.LOG_LEVEL,
        json_output=settings.LOG_JSON,
        service_name="fibcalc-worker",
    )
    log_startup_diagnostics("fibcalc-worker")

    try:
        code = asyncio.run(start_worker())
    except Exception as e:
        logger.exception(f"Worker crashed: {e}")
        code = EXIT_FAILURE
    sys.exit(code)


if __name__ == "__main__":
    main()
