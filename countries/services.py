"""
The refresh pipeline: fetch both sources, merge every country with its
exchange rate, upsert the batch, then redraw the summary image.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime

from django.db import transaction

from . import utils
from .exceptions import NoValidCountriesError, SummaryRenderError
from .models import Country, RefreshStatus, fold_name
from .summary import render_summary

logger = logging.getLogger(__name__)

TOP_COUNTRIES = 5

REFRESHED_FIELDS = [
    "name", "name_key", "capital", "region", "population", "flag_url",
    "currency_code", "exchange_rate", "estimated_gdp", "last_refreshed_at",
]

_refresh_lock = threading.Lock()


@dataclass
class RefreshResult:
    total_countries: int
    stored: int
    skipped: int
    last_refreshed_at: datetime
    image_generated: bool
    duration_seconds: float


def _valid_population(value):
    if not utils.is_number(value):
        return None
    try:
        if not math.isfinite(value) or value <= 0:
            return None
    except OverflowError:
        return None
    return value


def merge_country(item, rates, now, rng=None):
    """
    Build the stored field values for one source country.

    Returns None when the record must be skipped (no name, or a population
    that is missing, non-numeric, infinite or not positive). The GDP
    multiplier is drawn from ``rng`` (or the ``random`` module) on every call.
    """
    name = item.get("name")
    population = _valid_population(item.get("population"))
    if not isinstance(name, str) or not name.strip() or population is None:
        return None

    currency_code = None
    currencies = item.get("currencies") or []
    if isinstance(currencies, list) and currencies and isinstance(currencies[0], dict):
        currency_code = currencies[0].get("code") or None

    exchange_rate = None
    estimated_gdp = None
    if currency_code and currency_code in rates:
        exchange_rate = float(rates[currency_code])
        multiplier = utils.make_multiplier(rng)
        if exchange_rate != 0:
            estimated_gdp = population * multiplier / exchange_rate

    return {
        "name": name,
        "name_key": fold_name(name),
        "capital": item.get("capital") or None,
        "region": item.get("region") or None,
        "population": population,
        "currency_code": currency_code,
        "exchange_rate": exchange_rate,
        "estimated_gdp": estimated_gdp,
        "flag_url": item.get("flag") or None,
        "last_refreshed_at": now,
    }


def upsert_countries(records):
    """
    Insert or overwrite countries matched case-insensitively by name.

    All writes happen inside the caller's transaction. Returns the number of
    rows written.
    """
    existing_countries = {c.name_key: c for c in Country.objects.all()}
    new_countries, update_countries = [], []

    for record in records:
        existing = existing_countries.get(record["name_key"])
        if existing:
            for field in REFRESHED_FIELDS:
                setattr(existing, field, record[field])
            update_countries.append(existing)
        else:
            new_countries.append(Country(**record))

    if new_countries:
        Country.objects.bulk_create(new_countries, batch_size=100)
    if update_countries:
        Country.objects.bulk_update(update_countries, fields=REFRESHED_FIELDS, batch_size=100)
    return len(new_countries) + len(update_countries)


def top_countries_by_gdp(limit=TOP_COUNTRIES):
    return list(Country.objects.filter(estimated_gdp__isnull=False).order_by("-estimated_gdp")[:limit])


def refresh_countries(rng=None) -> RefreshResult:
    """
    Run one refresh cycle.

    Raises ConfigurationError, SourceUnavailableError, InvalidSourceDataError
    or NoValidCountriesError, in which case nothing has been written. A
    failure to draw the summary image is logged and reported through
    ``RefreshResult.image_generated``.
    """
    countries_url, rates_url = utils.get_source_urls()

    with _refresh_lock:
        start_time = time.monotonic()
        logger.info("Refresh started")

        countries_data, rates = utils.fetch_sources(countries_url, rates_url)
        logger.info("Fetched %d countries and %d exchange rates", len(countries_data), len(rates))

        now = utils.get_now()
        # keyed by case-folded name so duplicates in one payload collapse to the last one
        records = {}
        skipped = 0
        for item in countries_data:
            record = merge_country(item, rates, now, rng=rng)
            if record is None:
                skipped += 1
                continue
            records[record["name_key"]] = record

        if not records:
            if not countries_data:
                raise NoValidCountriesError("Countries API returned no records")
            raise NoValidCountriesError(f"All {len(countries_data)} source records were rejected")

        with transaction.atomic():
            stored = upsert_countries(records.values())
            RefreshStatus.touch(now)

        total = Country.objects.count()
        top5 = top_countries_by_gdp()

        image_generated = True
        try:
            render_summary(total, top5, now)
        except SummaryRenderError as e:
            image_generated = False
            logger.warning("Summary image generation failed: %s", e)

        duration = round(time.monotonic() - start_time, 2)
        logger.info(
            "Refresh finished: %d stored, %d skipped, %d total in %.2fs",
            stored, skipped, total, duration,
        )

    return RefreshResult(
        total_countries=total,
        stored=stored,
        skipped=skipped,
        last_refreshed_at=now,
        image_generated=image_generated,
        duration_seconds=duration,
    )
