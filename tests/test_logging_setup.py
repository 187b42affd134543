import logging
import logging.handlers
import queue

from buddhabrot.util.logging_setup import configure_worker_logging, get_logger, logging_initialiser, parse_level


class ClosingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.closed = False

    def emit(self, record):
        pass

    def close(self):
        self.closed = True
        super().close()


def test_worker_logging_replaces_and_closes_handlers():
    logger = get_logger()
    old = ClosingHandler()
    logger.addHandler(old)

    q = queue.Queue()
    configure_worker_logging(q, level=logging.DEBUG)

    assert old.closed
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.handlers.QueueHandler)
    assert logger.propagate is False

    logger.debug("chunk %s done", 3)
    record = q.get_nowait()
    assert record.getMessage() == "chunk 3 done"


def test_initialiser_without_queue_leaves_logger_alone():
    logger = get_logger()
    existing = ClosingHandler()
    logger.addHandler(existing)
    logging_initialiser(None, logging.DEBUG)
    assert logger.handlers == [existing]
    assert not existing.closed


def test_parse_level():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level("WARNING") == logging.WARNING
