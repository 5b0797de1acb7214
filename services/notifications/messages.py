"""Message bodies sent back to clients over chat."""

from collections.abc import Iterable

from services.analysis.schema import Issue

HELP_COMMANDS = "/status - Invoice status for the last 30 days\n/help - Show this message"


def duplicate_invoice_message() -> str:
    return "This invoice was already received earlier. It will not be processed again."


def invoice_received_message(filename: str, invoice_id: str) -> str:
    return (
        f"Invoice received: *{filename}*\n\n"
        "We are analyzing the document. You will be notified when the analysis is ready.\n\n"
        f"ID: {invoice_id[:8]}"
    )


def critical_issues_message(filename: str, issues: Iterable[Issue]) -> str:
    lines = "\n".join(f"- {issue.message}" for issue in issues)
    return (
        "*Attention: critical issues detected*\n\n"
        f"Invoice: {filename}\n\n"
        f"{lines}\n\n"
        "Please contact your accountant for more information."
    )


def status_message(invoice_count: int, open_alert_count: int) -> str:
    return (
        "*Status for the last 30 days*\n\n"
        f"Invoices received: {invoice_count}\n"
        f"Pending alerts: {open_alert_count}\n\n"
        "To send an invoice, just attach the PDF or XML here."
    )


def help_message() -> str:
    return (
        f"*Available commands:*\n\n{HELP_COMMANDS}\n\n"
        "To send an invoice, attach the PDF or XML file in this conversation."
    )


def greeting_message() -> str:
    return (
        "Hello! We received your message.\n\n"
        "To send an invoice, attach the PDF or XML file.\n\n"
        "Type /help to see the available commands."
    )
