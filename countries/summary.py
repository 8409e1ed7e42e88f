"""
Summary image rendering.

The image shows the total number of cached countries, the top countries by
estimated GDP and the refresh timestamp. It is rendered by a QuickChart
compatible chart service when ``CHART_SERVICE_URL`` is set, otherwise it is
drawn locally with Pillow. Either way the result is written as PNG to
``utils.get_summary_image_path()``.
"""
import io
import json
import logging

import requests
from django.conf import settings
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError
from requests.exceptions import RequestException

from . import utils
from .exceptions import SummaryRenderError

logger = logging.getLogger(__name__)


def render_summary(total, top_countries, timestamp):
    """
    Render the summary image and return its path.

    ``top_countries`` is a sequence of objects with ``name`` and
    ``estimated_gdp`` attributes. Raises SummaryRenderError on any failure.
    """
    try:
        path = utils.get_summary_image_path()
        if settings.CHART_SERVICE_URL:
            image = fetch_chart_image(total, top_countries, timestamp)
        else:
            image = draw_summary_image(total, top_countries, timestamp)
        image.save(path, "PNG")
    except (RequestException, UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise SummaryRenderError(str(e)) from e

    logger.info("Summary image written to %s", path)
    return path


def build_chart_config(total, top_countries, timestamp):
    return {
        "type": "bar",
        "data": {
            "labels": [c.name for c in top_countries],
            "datasets": [
                {
                    "label": "Top 5 Countries by Estimated GDP",
                    "data": [round(c.estimated_gdp, 2) for c in top_countries],
                }
            ],
        },
        "options": {
            "title": {
                "display": True,
                "text": f"Total countries: {total} | Refreshed: {_format_timestamp(timestamp)}",
                "fontSize": 18,
            },
            "legend": {"display": False},
        },
    }


def fetch_chart_image(total, top_countries, timestamp):
    config = build_chart_config(total, top_countries, timestamp)
    resp = requests.get(
        settings.CHART_SERVICE_URL,
        params={"c": json.dumps(config), "format": "png"},
        timeout=settings.CHART_SERVICE_TIMEOUT,
    )
    resp.raise_for_status()
    image = Image.open(io.BytesIO(resp.content))
    image.load()
    return image


def draw_summary_image(total, top_countries, timestamp):
    img = Image.new("RGB", (800, 500), color="white")
    draw = ImageDraw.Draw(img)

    try:
        font_title = ImageFont.truetype("DejaVuSans.ttf", 28)
        font_body = ImageFont.truetype("DejaVuSans.ttf", 20)
    except OSError:
        font_title = ImageFont.load_default()
        font_body = ImageFont.load_default()

    draw.text((20, 20), "Country Summary Report", fill="black", font=font_title)
    draw.text((20, 70), f"Total Countries: {total}", fill="black", font=font_body)
    draw.text((20, 120), "Top 5 Countries by Estimated GDP:", fill="black", font=font_body)

    y = 160
    if not top_countries:
        draw.text((40, y), "No GDP data available.", fill="gray", font=font_body)
    else:
        for c in top_countries:
            draw.text((40, y), f"- {c.name}: {round(c.estimated_gdp, 2):,}", fill="blue", font=font_body)
            y += 30

    draw.text((20, 400), f"Last Refresh: {_format_timestamp(timestamp)}", fill="black", font=font_body)
    return img


def _format_timestamp(timestamp):
    return timestamp.strftime("%Y-%m-%d %H:%M:%S %Z").strip()
