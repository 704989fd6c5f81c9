"""
txoutbox - Transactional Outbox for relational databases.

Side effects are recorded in the same transaction as the business write
and executed afterwards, with retries, backoff and blocking, by one or more
workers coordinating through the database.
"""

__version__ = "0.1.0"

from txoutbox.core import *  # noqa
from txoutbox.core.connection import ConnectionInfo, create_transaction_manager
from txoutbox.core.logging import configure_logging, get_logger
from txoutbox.core.settings import OutboxSettings, get_settings
from txoutbox.dispatch import *  # noqa
