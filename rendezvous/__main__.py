import logging

import uvicorn

from rendezvous.logging_config import configure_logging
from rendezvous.settings import settings

log = logging.getLogger("rendezvous")


def main() -> None:
    configure_logging(settings)
    log.info("starting signaling server on %s:%d", settings.host, settings.port)
    uvicorn.run("rendezvous.main:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
