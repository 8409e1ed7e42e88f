import os
import random
from unittest.mock import patch

import pytest
import requests

from countries import services
from countries.exceptions import (
    ConfigurationError, InvalidSourceDataError, NoValidCountriesError, SourceUnavailableError,
    SummaryRenderError,
)
from countries.models import Country, RefreshStatus
from tests.sources import SAMPLE_COUNTRIES, SAMPLE_RATES, fake_sources, json_response

pytestmark = pytest.mark.django_db


def _identity(country):
    return (
        country.name, country.capital, country.region, country.population,
        country.currency_code, country.exchange_rate, country.flag_url,
    )


@patch("countries.utils.requests.get")
def test_refresh_stores_valid_countries_and_status(mock_get, settings):
    mock_get.side_effect = fake_sources()

    result = services.refresh_countries(rng=random.Random(0))

    assert result.stored == 3
    assert result.skipped == 1
    assert result.total_countries == 3
    assert result.image_generated is True
    assert set(Country.objects.values_list("name", flat=True)) == {"Nigeria", "Japan", "Antarctica"}
    assert RefreshStatus.load().last_refreshed_at == result.last_refreshed_at
    assert os.path.exists(settings.CACHE_IMAGE_PATH)


@patch("countries.utils.requests.get")
def test_refresh_merges_rates_into_records(mock_get):
    mock_get.side_effect = fake_sources()

    services.refresh_countries()

    nigeria = Country.objects.get(name="Nigeria")
    assert nigeria.currency_code == "NGN"
    assert nigeria.exchange_rate == 1600.5
    assert 206139589 * 1000 / 1600.5 <= nigeria.estimated_gdp <= 206139589 * 2000 / 1600.5
    assert nigeria.flag_url == "https://flagcdn.com/ng.svg"

    antarctica = Country.objects.get(name="Antarctica")
    assert antarctica.currency_code is None
    assert antarctica.exchange_rate is None
    assert antarctica.estimated_gdp is None


@patch("countries.utils.requests.get")
def test_gdp_present_iff_nonzero_rate_for_stored_records(mock_get):
    countries = SAMPLE_COUNTRIES + [
        {"name": "Zeroland", "population": 5, "currencies": [{"code": "ZRO"}]},
        {"name": "Mysteria", "population": 5, "currencies": [{"code": "MYS"}]},
    ]
    rates = {"rates": dict(SAMPLE_RATES["rates"], ZRO=0)}
    mock_get.side_effect = fake_sources(countries=json_response(countries), rates=json_response(rates))

    services.refresh_countries()

    for country in Country.objects.all():
        has_rate = country.exchange_rate is not None and country.exchange_rate != 0
        assert (country.estimated_gdp is not None) == has_rate


@patch("countries.utils.requests.get")
def test_refresh_upserts_case_insensitively(mock_get, make_country):
    make_country("JAPAN", region="Old", population=1)
    mock_get.side_effect = fake_sources()

    services.refresh_countries()

    assert Country.objects.filter(name__iexact="japan").count() == 1
    japan = Country.objects.get(name__iexact="japan")
    assert japan.name == "Japan"
    assert japan.region == "Asia"
    assert japan.population == 125836021


@patch("countries.utils.requests.get")
def test_refresh_replaces_every_field(mock_get, make_country):
    make_country("Antarctica", capital="McMurdo", currency_code="AAD", exchange_rate=3.0, estimated_gdp=99.0)
    mock_get.side_effect = fake_sources()

    services.refresh_countries()

    antarctica = Country.objects.get(name="Antarctica")
    assert antarctica.capital is None
    assert antarctica.currency_code is None
    assert antarctica.exchange_rate is None
    assert antarctica.estimated_gdp is None


@patch("countries.utils.requests.get")
def test_refresh_keeps_countries_missing_from_source(mock_get, make_country):
    make_country("Atlantis")
    mock_get.side_effect = fake_sources()

    result = services.refresh_countries()

    assert Country.objects.filter(name="Atlantis").exists()
    assert result.total_countries == 4


@patch("countries.utils.requests.get")
def test_duplicate_names_in_one_payload_collapse(mock_get):
    countries = [
        {"name": "Japan", "population": 1},
        {"name": "JAPAN", "population": 2},
    ]
    mock_get.side_effect = fake_sources(countries=json_response(countries))

    result = services.refresh_countries()

    assert result.stored == 1
    assert Country.objects.get().population == 2


@patch("countries.utils.requests.get")
def test_repeated_refresh_keeps_identity_fields(mock_get):
    mock_get.side_effect = fake_sources()

    services.refresh_countries()
    first = {c.name: c for c in Country.objects.all()}
    services.refresh_countries()
    second = {c.name: c for c in Country.objects.all()}

    assert first.keys() == second.keys()
    for name, country in second.items():
        assert _identity(country) == _identity(first[name])
        # GDP is redrawn on every refresh; only its sign is stable
        if country.estimated_gdp is not None:
            assert country.estimated_gdp >= 0


@patch("countries.utils.requests.get")
def test_missing_configuration_makes_no_requests(mock_get, settings):
    settings.EXCHANGE_RATES_API_URL = None

    with pytest.raises(ConfigurationError):
        services.refresh_countries()

    mock_get.assert_not_called()


@patch("countries.utils.requests.get")
def test_source_failure_aborts_without_writes(mock_get, make_country):
    make_country("Atlantis")
    mock_get.side_effect = fake_sources(countries=requests.ConnectionError("boom"))

    with pytest.raises(SourceUnavailableError):
        services.refresh_countries()

    assert list(Country.objects.values_list("name", flat=True)) == ["Atlantis"]
    assert RefreshStatus.load() is None


@patch("countries.utils.requests.get")
def test_malformed_rates_abort_without_writes(mock_get):
    mock_get.side_effect = fake_sources(rates=json_response({"rates": {}}))

    with pytest.raises(InvalidSourceDataError):
        services.refresh_countries()

    assert Country.objects.count() == 0


@patch("countries.utils.requests.get")
def test_empty_country_list_is_an_error(mock_get, make_country):
    make_country("Atlantis")
    mock_get.side_effect = fake_sources(countries=json_response([]))

    with pytest.raises(NoValidCountriesError):
        services.refresh_countries()

    assert list(Country.objects.values_list("name", flat=True)) == ["Atlantis"]
    assert RefreshStatus.load() is None


@patch("countries.utils.requests.get")
def test_all_invalid_populations_is_an_error(mock_get):
    countries = [{"name": "A", "population": 0}, {"name": "B", "population": "many"}]
    mock_get.side_effect = fake_sources(countries=json_response(countries))

    with pytest.raises(NoValidCountriesError):
        services.refresh_countries()

    assert Country.objects.count() == 0


@patch("countries.utils.requests.get")
def test_failed_refresh_keeps_previous_status(mock_get):
    mock_get.side_effect = fake_sources()
    first = services.refresh_countries()

    mock_get.side_effect = fake_sources(countries=json_response([]))
    with pytest.raises(NoValidCountriesError):
        services.refresh_countries()

    assert RefreshStatus.objects.count() == 1
    assert RefreshStatus.load().last_refreshed_at == first.last_refreshed_at


@patch("countries.services.render_summary")
@patch("countries.utils.requests.get")
def test_render_failure_does_not_fail_refresh(mock_get, mock_render):
    mock_get.side_effect = fake_sources()
    mock_render.side_effect = SummaryRenderError("chart service down")

    result = services.refresh_countries()

    assert result.image_generated is False
    assert Country.objects.count() == 3
    assert RefreshStatus.load() is not None


@patch("countries.services.render_summary")
@patch("countries.utils.requests.get")
def test_summary_receives_top_countries_over_whole_store(mock_get, mock_render, make_country):
    for i in range(6):
        make_country(f"Rich {i}", estimated_gdp=10.0 ** (20 + i), exchange_rate=1.0)
    make_country("Unknown", estimated_gdp=None)
    mock_get.side_effect = fake_sources()

    result = services.refresh_countries()

    total, top, timestamp = mock_render.call_args.args
    assert total == 10
    assert [c.name for c in top] == ["Rich 5", "Rich 4", "Rich 3", "Rich 2", "Rich 1"]
    assert timestamp == result.last_refreshed_at


@patch("countries.utils.requests.get")
def test_refresh_upserts_non_ascii_names(mock_get, make_country):
    make_country("ÅLAND ISLANDS", population=1)
    countries = [{"name": "Åland Islands", "region": "Europe", "population": 29789.5}]
    mock_get.side_effect = fake_sources(countries=json_response(countries))

    result = services.refresh_countries()

    assert result.stored == 1
    aland = Country.objects.get()
    assert aland.name == "Åland Islands"
    assert aland.population == 29789.5
