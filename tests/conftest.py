import pytest

from models.recurring import EndType, Frequency, RecurringSeries, SeriesStatus
from tests.fakes import InMemoryDocumentRepository, InMemorySeriesRepository, utc


@pytest.fixture
def series_repo():
    return InMemorySeriesRepository()


@pytest.fixture
def document_repo(series_repo):
    return InMemoryDocumentRepository(series_repo)


@pytest.fixture
def make_series(series_repo):
    """Store a series with sensible defaults; keyword arguments override them."""

    def _make(**overrides) -> RecurringSeries:
        fields = dict(
            team_id=1,
            user_id=42,
            frequency=Frequency.MONTHLY_DATE,
            frequency_day=15,
            timezone="UTC",
            end_type=EndType.NEVER,
            customer_name="Acme",
            amount=100.0,
            currency="EUR",
            line_items=[{"description": "Retainer", "quantity": 1, "price": 100.0}],
            template={"title": "Invoice"},
            status=SeriesStatus.ACTIVE,
            next_scheduled_at=utc(2025, 1, 15, 9),
        )
        fields.update(overrides)
        return series_repo.put(RecurringSeries(**fields))

    return _make
