import logging
import os
import random
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from numbers import Number

import requests
from django.conf import settings
from requests.exceptions import RequestException

from .exceptions import ConfigurationError, InvalidSourceDataError, SourceUnavailableError

logger = logging.getLogger(__name__)

MULTIPLIER_MIN = 1000
MULTIPLIER_MAX = 2000


def get_source_urls():
    """Return (countries_url, rates_url), failing before any request is made."""
    countries_url = getattr(settings, "COUNTRIES_API_URL", None)
    rates_url = getattr(settings, "EXCHANGE_RATES_API_URL", None)
    missing = [
        setting
        for setting, value in (("COUNTRIES_API_URL", countries_url), ("EXCHANGE_RATES_API_URL", rates_url))
        if not value
    ]
    if missing:
        raise ConfigurationError(f"External API URLs missing: {', '.join(missing)}")
    return countries_url, rates_url


def _get_json(url, source):
    try:
        resp = requests.get(url, timeout=settings.SOURCE_TIMEOUT)
        resp.raise_for_status()
        return resp.json()
    except (RequestException, ValueError) as e:
        logger.warning("%s request to %s failed: %s", source, url, e)
        raise SourceUnavailableError(f"Could not fetch data from {source}") from e


def fetch_countries(url):
    data = _get_json(url, "Countries API")
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise InvalidSourceDataError("Countries API did not return a list of country objects")
    return data


def fetch_exchange_rates(url):
    data = _get_json(url, "Exchange rates API")
    # API returns 'rates' mapping
    rates = data.get("rates") if isinstance(data, dict) else None
    if not isinstance(rates, dict) or not rates:
        raise InvalidSourceDataError("Exchange rates API did not return a non-empty 'rates' mapping")
    bad = [code for code, rate in rates.items() if not is_number(rate)]
    if bad:
        raise InvalidSourceDataError(f"Non-numeric exchange rates for: {', '.join(sorted(bad)[:5])}")
    return rates


def fetch_sources(countries_url, rates_url):
    """
    Fetch both sources at the same time and return (countries, rates).

    If either fetch raises, that exception propagates and the other result
    is thrown away.
    """
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="source-fetch") as pool:
        countries_future = pool.submit(fetch_countries, countries_url)
        rates_future = pool.submit(fetch_exchange_rates, rates_url)
        return countries_future.result(), rates_future.result()


def is_number(value):
    return isinstance(value, Number) and not isinstance(value, bool)


def make_multiplier(rng=None):
    return (rng or random).randint(MULTIPLIER_MIN, MULTIPLIER_MAX)


def get_summary_image_path():
    """Return full path to the summary image, creating its directory."""
    path = os.path.abspath(settings.CACHE_IMAGE_PATH)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return path


def get_now():
    """Return current UTC datetime (aware)."""
    return datetime.now(timezone.utc)
