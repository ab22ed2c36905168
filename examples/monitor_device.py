#!/usr/bin/env python3

"""Example script: connect to a Siegenia device and print value changes."""

import asyncio
import logging
import os
from typing import Any

from pysiegenia import (
    DeviceConfig,
    DeviceSession,
    MemoryPropertyStore,
    PySiegeniaException,
)

# --- Configuration ---
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)

# Read connection settings from environment variables
HOST = os.getenv("SIEGENIA_HOST", "")
PASSWORD = os.getenv("SIEGENIA_PASSWORD", "")
USER = os.getenv("SIEGENIA_USER", "admin")
SCHEME = os.getenv("SIEGENIA_SCHEME", "wss")
PORT = int(os.getenv("SIEGENIA_PORT", "443"))
DURATION = float(os.getenv("SIEGENIA_MONITOR_SECONDS", "60"))

if not HOST or not PASSWORD:
    logging.error("Please set SIEGENIA_HOST and SIEGENIA_PASSWORD environment variables.")
    raise SystemExit(1)


class PrintingStore(MemoryPropertyStore):
    """Memory store that logs every value change."""

    def set_value(self, object_id: str, value: Any) -> None:
        if self.values.get(object_id) != value:
            logging.info("  %s = %r", object_id, value)
        super().set_value(object_id, value)


async def main():
    """Run the setup sequence and watch pushes for a while."""
    config = DeviceConfig(
        host=HOST, port=PORT, scheme=SCHEME, user=USER, password=PASSWORD
    )
    store = PrintingStore()
    session = DeviceSession(config, store)
    try:
        await session.async_start()
        await session.async_wait_ready(timeout=60)

        logging.info("Device ready, %d properties:", len(store.objects))
        for object_id in sorted(store.objects):
            definition = store.objects[object_id]
            logging.info(
                "  %s = %r (%s%s)",
                object_id,
                store.get_value(object_id),
                definition.role,
                ", writable" if definition.write else "",
            )

        logging.info("Watching for updates for %.0f seconds...", DURATION)
        await asyncio.sleep(DURATION)
    except PySiegeniaException as err:
        logging.error("Device error: %s", err)
    except asyncio.TimeoutError:
        logging.error("Device did not finish setup in time")
    finally:
        await session.async_stop()


if __name__ == "__main__":
    asyncio.run(main())
