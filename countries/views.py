import logging
import os

from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status
from django.db.models import F
from django.http import FileResponse
from .exceptions import RefreshError
from .models import Country, RefreshStatus, fold_name
from .serializers import (
    CountrySerializer, CountryUpdateSerializer, RefreshResultSerializer, StatusSerializer,
)
from . import services, utils

logger = logging.getLogger(__name__)

ALLOWED_FILTERS = {
    "region": "region__iexact",
    "currency_code": "currency_code__iexact",
    "currency": "currency_code__iexact",
}

SORT_FIELDS = {
    "name": "name",
    "capital": "capital",
    "region": "region",
    "population": "population",
    "currency_code": "currency_code",
    "exchange_rate": "exchange_rate",
    "estimated_gdp": "estimated_gdp",
    "gdp": "estimated_gdp",
    "last_refreshed_at": "last_refreshed_at",
}


def _validation_error(details):
    return Response({"error": "Validation failed", "details": details}, status=status.HTTP_400_BAD_REQUEST)


def _not_found():
    return Response({"error": "Country not found"}, status=status.HTTP_404_NOT_FOUND)


@api_view(['POST'])
def refresh_countries(request):
    """
    POST /countries/refresh
    Fetch countries and exchange rates, then upsert the cached data and
    redraw the summary image.
    """
    try:
        result = services.refresh_countries()
    except RefreshError as e:
        logger.warning("Refresh aborted: %s (%s)", e.message, e.details)
        return Response(e.as_response_data(), status=e.status_code)

    data = {"message": "Refresh successful"}
    data.update(RefreshResultSerializer(result).data)
    return Response(data, status=status.HTTP_200_OK)


@api_view(['GET'])
def list_countries(request):
    """
    GET /countries
    Filters (case-insensitive exact match):
      - region, currency_code (alias: currency)
    Sorting:
      - ?sort=<field>_asc or <field>_desc, e.g. ?sort=gdp_desc
    Default:
      - Ordered by name ascending.
    """
    qs = Country.objects.all()

    for key in request.query_params.keys():
        if key == "sort":
            continue
        if key not in ALLOWED_FILTERS:
            return _validation_error({key: "is not a valid filter"})
        value = request.query_params.get(key)
        if not value:
            return _validation_error({key: "is required"})
        qs = qs.filter(**{ALLOWED_FILTERS[key]: value})

    sort_param = request.query_params.get("sort")
    if sort_param:
        field, _, direction = sort_param.rpartition("_")
        if direction not in ("asc", "desc") or not field:
            return _validation_error({"sort": "invalid format (use <field>_asc or <field>_desc)"})
        if field not in SORT_FIELDS:
            return _validation_error({field: "is not a valid sort field"})
        column = F(SORT_FIELDS[field])
        ordering = column.desc(nulls_last=True) if direction == "desc" else column.asc(nulls_last=True)
        qs = qs.order_by(ordering, "name")
    else:
        qs = qs.order_by("name")

    countries = CountrySerializer(qs, many=True).data
    return Response({"total": len(countries), "countries": countries})


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
def country_detail(request, name):
    """
    GET /countries/:name         -> country, or 404
    PUT|PATCH /countries/:name   -> partial update, 400 on empty body
    DELETE /countries/:name      -> 204, or 404
    """
    name = name.strip()
    if not name:
        return _validation_error({"name": "is required"})

    country = Country.objects.filter(name_key=fold_name(name)).first()
    if country is None:
        return _not_found()

    if request.method == 'GET':
        return Response(CountrySerializer(country).data)

    if request.method == 'DELETE':
        country.delete()
        logger.info("Deleted country %s", country.name)
        return Response(status=status.HTTP_204_NO_CONTENT)

    serializer = CountryUpdateSerializer(country, data=request.data, partial=True)
    if not serializer.is_valid():
        return _validation_error(serializer.errors)
    country = serializer.save()
    logger.info("Updated country %s: %s", country.name, ", ".join(sorted(serializer.validated_data)))
    return Response({
        "message": "Country updated successfully",
        "country": CountrySerializer(country).data,
    })


@api_view(['GET'])
def get_status(request):
    """
    GET /status -> { total_countries, last_refreshed_at }
    last_refreshed_at is null until the first successful refresh.
    """
    refresh_status = RefreshStatus.load()
    data = {
        "total_countries": Country.objects.count(),
        "last_refreshed_at": refresh_status.last_refreshed_at if refresh_status else None,
    }
    return Response(StatusSerializer(data).data)


@api_view(['GET'])
def get_summary_image(request):
    """
    GET /countries/image
    Serve the summary image written by the last refresh.
    """
    path = utils.get_summary_image_path()
    if not os.path.exists(path):
        return Response({"error": "Summary image not found"}, status=status.HTTP_404_NOT_FOUND)
    return FileResponse(open(path, 'rb'), content_type='image/png')
