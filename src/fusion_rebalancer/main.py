"""Entry point for the Fusion Rebalancer.

Runs one rebalance in iExec batch mode when IEXEC_OUT is set, otherwise
serves the strategy API with its background sweep.
"""

import asyncio
import logging

import uvicorn

from .config import BATCH_REQUIRED, SERVER_REQUIRED, settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


async def _batch() -> None:
    from .iexec import ProtectedDataReader, run_batch
    from .rebalancer import Rebalancer

    rebalancer = Rebalancer.from_settings(settings)
    try:
        await run_batch(
            settings.iexec_out,
            rebalancer,
            ProtectedDataReader(settings.iexec_in, settings.iexec_dataset_filename),
        )
    finally:
        await rebalancer.close()


def main() -> None:
    if settings.iexec_out:
        settings.require(BATCH_REQUIRED)
        logger.info("Running in iExec batch mode")
        asyncio.run(_batch())
        return

    settings.require(SERVER_REQUIRED)
    logger.info("Running in API server mode")
    uvicorn.run(
        "fusion_rebalancer.api:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
