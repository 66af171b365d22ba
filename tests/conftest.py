"""Pytest configuration and shared fixtures."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from campforms.database import Base
from campforms.models import domain, audit  # noqa: F401
from campforms.models.enums import FormType
from campforms.api.schemas import FieldInput, FormMetadata, FormScope
from campforms.services.form_store import FormStore


@pytest.fixture
def engine():
    """Fresh in-memory database shared by every connection of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Create a fresh in-memory database for each test."""
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def store(db_session):
    return FormStore(db_session)


@pytest.fixture
def scope():
    return FormScope(organization_id="org_1", camp_id="camp_1", session_id="session_1")


@pytest.fixture
def waiver_metadata():
    return FormMetadata(name="Camper Waiver", description="Liability waiver", form_type=FormType.WAIVER)


@pytest.fixture
def waiver_fields():
    """Initial Camper Waiver fields: a required name and a required agreement."""
    return [
        FieldInput(
            field_key="camper_name",
            label="Camper name",
            field_type="text",
            validation_rules={"required": True, "min_length": 2},
            display_order=1
        ),
        FieldInput(
            field_key="agree",
            label="I agree to the terms",
            field_type="boolean",
            validation_rules={"required": True},
            display_order=2
        ),
    ]


@pytest.fixture
def draft_form(store, scope, waiver_metadata, waiver_fields):
    """Camper Waiver at version 2 (created, then given its fields), not published."""
    form = store.create(scope, waiver_metadata, created_by="admin_1")
    return store.update_definition(form.id, waiver_metadata, waiver_fields, user_id="admin_1")


@pytest.fixture
def published_form(store, draft_form):
    """Camper Waiver published at version 2."""
    return store.publish(draft_form.id, user_id="admin_1")
