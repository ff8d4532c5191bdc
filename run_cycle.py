"""
Run one notification cycle from the command line.
Cron-friendly alternative to POST /cycle; prints the summary as JSON.
"""
import asyncio
import json
import sys

from expiry_alerts.config import settings
from expiry_alerts.container import build_container
from expiry_alerts.database import init_db
from expiry_alerts.exceptions import PersistenceError
from expiry_alerts.logging_config import setup_logging


async def main(refresh_views: bool = False) -> int:
    setup_logging(settings)
    client = await init_db(settings)
    container = build_container(settings)
    try:
        summary = await container.orchestrator.trigger()
        print(json.dumps(summary.to_dict(), indent=2, default=str))
        if refresh_views:
            results = await container.refresher.refresh_all()
            print(json.dumps(results, indent=2))
    except PersistenceError as e:
        print(f"❌ Cycle failed: {e.message}", file=sys.stderr)
        return 1
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(refresh_views="--refresh-views" in sys.argv)))
