from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
import signal

from batchrun.domain.models import RunSummary
from batchrun.services.bootstrap import RuntimeContainer

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


async def run_batch_until_done(
    *,
    container: RuntimeContainer,
    items: Sequence[str],
    role: str,
    logger: logging.Logger,
    install_signal_handlers: bool = True,
) -> RunSummary:
    """Run one orchestrator pass with signal-driven cooperative shutdown."""
    orchestrator = container.orchestrator
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    if install_signal_handlers:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, orchestrator.stop)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread.
                continue
            installed.append(sig)

    logger.info("batch role started", extra={"role": role, "run_id": orchestrator.run_id})
    if container.on_startup is not None:
        await container.on_startup()
    try:
        return await orchestrator.run(items)
    finally:
        if container.on_shutdown is not None:
            await container.on_shutdown()
        for sig in installed:
            loop.remove_signal_handler(sig)
        logger.info("batch role stopped", extra={"role": role, "run_id": orchestrator.run_id})
