"""Shared fixtures: settings, in-memory database and a seeded firm/client."""

from collections.abc import Generator
from unittest.mock import MagicMock

import pytest

from services.db.models import Client, Firm
from services.db.repository import InvoiceRepository
from services.db.session import Database
from services.shared.config import Settings


@pytest.fixture
def settings() -> Settings:
    """Create test settings (in-memory database, no backoff delays)."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        siliconflow_api_key="sk-test",
        ai_backoff_base_seconds=0,
        ai_max_retries=3,
    )


@pytest.fixture
def database() -> Generator[Database, None, None]:
    """Create an isolated in-memory database with all tables."""
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def repository(database: Database) -> InvoiceRepository:
    return InvoiceRepository(database)


@pytest.fixture
def firm(database: Database) -> Firm:
    """Seed a Portuguese accounting firm."""
    with database.session() as session:
        firm = Firm(name="Acme Contabilidade", country_code="PT")
        session.add(firm)
    return firm


@pytest.fixture
def client(database: Database, repository: InvoiceRepository, firm: Firm) -> Client:
    """Seed an active client with a formatted chat number."""
    with database.session() as session:
        seeded = Client(
            firm_id=firm.id,
            name="Acme Lda",
            tax_id="PT509999990",
            whatsapp_number="+351 912 345 678",
        )
        session.add(seeded)
    loaded = repository.get_client(firm.id, seeded.id)
    assert loaded is not None
    return loaded


@pytest.fixture
def notifier() -> MagicMock:
    """Notification service double that records sends."""
    mock = MagicMock()
    mock.send_text.return_value = True
    mock.is_configured.return_value = False
    return mock
