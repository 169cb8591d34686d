"""Logging configuration helpers."""

import logging


class AccountContextFilter(logging.Filter):
    """Expose the ``account_id`` passed through ``extra`` to the formatter."""

    def filter(self, record: logging.LogRecord) -> bool:
        account_id = getattr(record, "account_id", None)
        record.account = f" [{account_id}]" if account_id else ""
        return True


def configure_logging() -> None:
    """Configure application logging with a single stream handler."""
    logger = logging.getLogger("whatsapp_gateway")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.addFilter(AccountContextFilter())
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s: %(name)s%(account)s: %(message)s")
    )
    logger.addHandler(handler)
    logger.propagate = False
