import logging

logger = logging.getLogger(__name__)


class EventLog:
    """Holds the most recent diagnostic message.

    Writers replace the slot wholesale, so no lock is taken; the last write wins.
    Reading never clears it.
    """

    def __init__(self) -> None:
        self._message = ""

    def record(self, message: str, level: int = logging.WARNING) -> None:
        self._message = message
        logger.log(level, "%s", message)

    def get(self) -> str:
        return self._message


EVENT_LOG = EventLog()
