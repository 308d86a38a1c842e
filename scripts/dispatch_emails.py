import asyncio

from jearch.core.app_factory import build_container
from jearch.core.config import Settings
from jearch.core.logging import configure_logging


async def main() -> None:
    configure_logging()

    container = build_container(Settings())
    try:
        summary = await container.email_dispatcher.dispatch_ready()
    finally:
        container.persistence.close()

    print(
        f"claimed={summary.claimed} sent={summary.sent} retried={summary.retried} "
        f"failed={summary.failed} discarded={summary.discarded} "
        f"deferred={summary.deferred} errored={summary.errored}"
    )


if __name__ == "__main__":
    asyncio.run(main())
