"""Unit tests for chat text commands."""

import pytest

from services.analysis.schema import AnalysisResult, Issue
from services.db.models import Client
from services.db.repository import InvoiceRepository
from services.notifications import messages
from services.webhooks.commands import COMMANDS, reply_for


def _seed(repository: InvoiceRepository, client: Client) -> None:
    invoice = repository.create_invoice(
        firm_id=client.firm_id,
        client_id=client.id,
        source_type="whatsapp",
        file_path="p",
        file_name="a.pdf",
        file_type="application/pdf",
        file_hash="h",
        status="analyzed",
    )
    result = AnalysisResult(
        issues=[
            Issue(code="C", severity="critical", message="c"),
            Issue(code="W", severity="warning", message="w"),
            Issue(code="I", severity="info", message="i"),
        ]
    )
    analysis = repository.create_analysis(invoice, result, "siliconflow", "m")
    for sequence, issue in enumerate(result.issues):
        repository.create_alert(analysis, issue, sequence)


@pytest.mark.parametrize("text", ["/status", "status", "  STATUS "])
def test_status_command(repository: InvoiceRepository, client: Client, text: str) -> None:
    _seed(repository, client)

    reply = reply_for(repository, client, text)

    assert reply == messages.status_message(1, 2)


@pytest.mark.parametrize("text", ["/help", "help", "/ajuda"])
def test_help_command(repository: InvoiceRepository, client: Client, text: str) -> None:
    assert reply_for(repository, client, text) == messages.help_message()


def test_unknown_text_gets_greeting(repository: InvoiceRepository, client: Client) -> None:
    reply = reply_for(repository, client, "hello, is this the accountant?")

    assert reply == messages.greeting_message()
    assert "/help" in reply


def test_command_table_is_fixed() -> None:
    assert set(COMMANDS) == {"/status", "status", "/help", "help", "/ajuda"}
