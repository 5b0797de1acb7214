"""Unit tests for tenant-scoped persistence."""

from datetime import UTC, datetime

import pytest

from services.analysis.schema import AnalysisResult, Issue
from services.db.models import Client, Firm, Invoice
from services.db.repository import (
    AlertAlreadyResolvedError,
    AlertNotFoundError,
    DuplicateInvoiceError,
    InvoiceRepository,
)
from services.db.session import Database


def _invoice_fields(client: Client, file_hash: str = "abc", **overrides) -> dict:
    fields = {
        "firm_id": client.firm_id,
        "client_id": client.id,
        "source_type": "upload",
        "file_path": f"{client.firm_id}/{client.id}/1_a.pdf",
        "file_name": "a.pdf",
        "file_type": "application/pdf",
        "file_hash": file_hash,
        "status": "processing",
    }
    fields.update(overrides)
    return fields


def _alert(repository: InvoiceRepository, client: Client) -> str:
    invoice = repository.create_invoice(**_invoice_fields(client))
    result = AnalysisResult(
        issues=[Issue(code="NIF_INVALID", severity="critical", message="Invalid NIF")]
    )
    analysis = repository.create_analysis(invoice, result, "siliconflow", "model")
    return repository.create_alert(analysis, result.issues[0], 0).id


class TestClientLookup:
    """Test sender resolution."""

    def test_whatsapp_number_stored_normalized(self, client: Client) -> None:
        assert client.whatsapp_number == "351912345678"

    @pytest.mark.parametrize(
        "sender", ["351912345678", "+351 912 345 678", "351912345678@s.whatsapp.net"]
    )
    def test_find_by_any_format(
        self, repository: InvoiceRepository, client: Client, sender: str
    ) -> None:
        found = repository.find_client_by_whatsapp(sender)

        assert found is not None
        assert found.id == client.id
        assert found.firm.country_code == "PT"

    def test_unknown_sender(self, repository: InvoiceRepository, client: Client) -> None:
        assert repository.find_client_by_whatsapp("15550001111") is None
        assert repository.find_client_by_whatsapp("") is None

    def test_soft_deleted_client_not_resolved(
        self, database: Database, repository: InvoiceRepository, client: Client
    ) -> None:
        with database.session() as session:
            stored = session.get(Client, client.id)
            assert stored is not None
            stored.deleted_at = datetime.now(UTC)

        assert repository.find_client_by_whatsapp("351912345678") is None
        assert repository.get_client(client.firm_id, client.id) is None

    def test_get_client_scoped_by_firm(
        self, database: Database, repository: InvoiceRepository, client: Client
    ) -> None:
        with database.session() as session:
            other = Firm(name="Other")
            session.add(other)

        assert repository.get_client(other.id, client.id) is None


class TestInvoices:
    """Test invoice persistence and state transitions."""

    def test_unique_client_hash(self, repository: InvoiceRepository, client: Client) -> None:
        first = repository.create_invoice(**_invoice_fields(client))

        with pytest.raises(DuplicateInvoiceError) as exc_info:
            repository.create_invoice(**_invoice_fields(client))

        assert exc_info.value.existing_id == first.id
        assert repository.count_invoices(client.firm_id, client.id) == 1

    def test_same_hash_other_client_allowed(
        self, database: Database, repository: InvoiceRepository, client: Client
    ) -> None:
        with database.session() as session:
            other = Client(firm_id=client.firm_id, name="Beta", whatsapp_number="351911111111")
            session.add(other)

        repository.create_invoice(**_invoice_fields(client))
        repository.create_invoice(**_invoice_fields(other))

        assert repository.count_invoices(client.firm_id, other.id) == 1

    def test_soft_deleted_invoice_still_counts_as_duplicate(
        self, repository: InvoiceRepository, client: Client
    ) -> None:
        repository.create_invoice(**_invoice_fields(client, deleted_at=datetime.now(UTC)))

        assert repository.find_invoice_by_hash(client.firm_id, client.id, "abc") is not None
        with pytest.raises(DuplicateInvoiceError):
            repository.create_invoice(**_invoice_fields(client))

    def test_get_invoice_scoped_by_firm(
        self, repository: InvoiceRepository, client: Client
    ) -> None:
        invoice = repository.create_invoice(**_invoice_fields(client))

        assert repository.get_invoice(invoice.id, firm_id=client.firm_id) is not None
        assert repository.get_invoice(invoice.id, firm_id="another-firm") is None

    def test_transition_only_from_expected_status(
        self, repository: InvoiceRepository, client: Client
    ) -> None:
        invoice = repository.create_invoice(**_invoice_fields(client))

        assert repository.transition_invoice(invoice.id, "processing", "analyzed") is True
        assert repository.transition_invoice(invoice.id, "processing", "error") is False

        stored = repository.get_invoice(invoice.id)
        assert stored is not None
        assert stored.status == "analyzed"

    def test_default_status_pending(self, repository: InvoiceRepository, client: Client) -> None:
        fields = _invoice_fields(client)
        del fields["status"]

        invoice = repository.create_invoice(**fields)

        assert invoice.status == "pending"

    def test_count_recent_invoices(
        self, database: Database, repository: InvoiceRepository, client: Client
    ) -> None:
        repository.create_invoice(**_invoice_fields(client, file_hash="new"))
        old = repository.create_invoice(**_invoice_fields(client, file_hash="old"))
        with database.session() as session:
            stored = session.get(Invoice, old.id)
            assert stored is not None
            stored.created_at = datetime(2020, 1, 1, tzinfo=UTC)

        assert repository.count_invoices(client.firm_id, client.id) == 2
        assert repository.count_recent_invoices(client.firm_id, client.id, days=30) == 1


class TestAlerts:
    """Test alert counting and resolution."""

    def test_resolve_once(self, repository: InvoiceRepository, client: Client) -> None:
        alert_id = _alert(repository, client)

        alert = repository.resolve_alert(client.firm_id, alert_id, "user-1", "checked")

        assert alert.resolved_by == "user-1"
        assert alert.resolution_notes == "checked"
        assert alert.resolved_at is not None

    def test_second_resolution_rejected_and_first_kept(
        self, repository: InvoiceRepository, client: Client
    ) -> None:
        alert_id = _alert(repository, client)
        repository.resolve_alert(client.firm_id, alert_id, "user-1", "first")

        with pytest.raises(AlertAlreadyResolvedError) as exc_info:
            repository.resolve_alert(client.firm_id, alert_id, "user-2", "second")

        assert exc_info.value.alert.resolved_by == "user-1"
        stored = repository.list_alerts(client.firm_id)[0]
        assert stored.resolved_by == "user-1"
        assert stored.resolution_notes == "first"

    def test_resolve_unknown_alert(self, repository: InvoiceRepository, client: Client) -> None:
        with pytest.raises(AlertNotFoundError):
            repository.resolve_alert(client.firm_id, "missing", "user-1")

    def test_resolve_other_tenant_alert(
        self, repository: InvoiceRepository, client: Client
    ) -> None:
        alert_id = _alert(repository, client)

        with pytest.raises(AlertNotFoundError):
            repository.resolve_alert("another-firm", alert_id, "user-1")

    def test_open_alert_count_excludes_resolved(
        self, repository: InvoiceRepository, client: Client
    ) -> None:
        alert_id = _alert(repository, client)
        assert repository.count_open_alerts(client.firm_id, client.id) == 1

        repository.resolve_alert(client.firm_id, alert_id, "user-1")

        assert repository.count_open_alerts(client.firm_id, client.id) == 0


class TestAuditAndDeadLetters:
    def test_audit_log_roundtrip(self, repository: InvoiceRepository, client: Client) -> None:
        repository.add_audit_log(
            client.firm_id,
            "create",
            "invoice",
            resource_id="inv-1",
            client_id=client.id,
            metadata={"source": "whatsapp", "filename": "a.pdf"},
        )

        entries = repository.list_audit_logs(client.firm_id)
        assert len(entries) == 1
        assert entries[0].metadata_json == {"source": "whatsapp", "filename": "a.pdf"}

    def test_dead_letters_scoped_by_firm(
        self, repository: InvoiceRepository, client: Client
    ) -> None:
        repository.add_dead_letter("inv-1", client.firm_id, "boom", {"invoice_id": "inv-1"})

        assert len(repository.list_dead_letters(client.firm_id)) == 1
        assert repository.list_dead_letters("another-firm") == []
