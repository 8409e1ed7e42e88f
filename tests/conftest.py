import pytest
from rest_framework.test import APIClient

from tests.sources import COUNTRIES_URL, RATES_URL


@pytest.fixture(autouse=True)
def source_settings(settings, tmp_path):
    """Point every test at fake source URLs, a temp image cache and the local renderer."""
    settings.COUNTRIES_API_URL = COUNTRIES_URL
    settings.EXCHANGE_RATES_API_URL = RATES_URL
    settings.CACHE_IMAGE_PATH = str(tmp_path / "cache" / "summary.png")
    settings.CHART_SERVICE_URL = ""
    return settings


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def make_country(db):
    from countries.models import Country

    def _make(name, **fields):
        values = {"population": 1000}
        values.update(fields)
        return Country.objects.create(name=name, **values)

    return _make
