"""Chat text commands.

A fixed table maps a normalized command to a function producing the reply.
Unrecognized text gets a greeting pointing at ``/help``.
"""

import logging
from collections.abc import Callable

from services.db.models import Client
from services.db.repository import InvoiceRepository
from services.notifications import messages

logger = logging.getLogger(__name__)

CommandHandler = Callable[[InvoiceRepository, Client], str]


def _status(repository: InvoiceRepository, client: Client) -> str:
    invoices = repository.count_recent_invoices(client.firm_id, client.id, days=30)
    alerts = repository.count_open_alerts(client.firm_id, client.id)
    return messages.status_message(invoices, alerts)


def _help(repository: InvoiceRepository, client: Client) -> str:
    return messages.help_message()


COMMANDS: dict[str, CommandHandler] = {
    "/status": _status,
    "status": _status,
    "/help": _help,
    "help": _help,
    "/ajuda": _help,
}


def reply_for(repository: InvoiceRepository, client: Client, text: str) -> str:
    """Build the reply for a text message.

    Args:
        repository: Data access for counters
        client: Resolved sender
        text: Raw message body

    Returns:
        Reply body
    """
    command = text.strip().lower()
    handler = COMMANDS.get(command)
    if handler is None:
        return messages.greeting_message()
    logger.info(f"Running command '{command}' for client {client.id}")
    return handler(repository, client)
