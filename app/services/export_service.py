# Competitor listing CSV export.

import csv
import io
from typing import Any, List

from app.core.errors import InvalidArgument
from app.models.domain import CompetitorListing, Coordinates

CSV_HEADER = [
    "Name",
    "Latitude",
    "Longitude",
    "Distance (m)",
    "Rating",
    "Ratings",
    "Status",
    "Address",
    "Link",
]


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def _status(open_now: Any) -> str:
    if open_now is None:
        return ""
    return "Open" if open_now else "Closed"


def export_listings_csv(listings: List[CompetitorListing]) -> str:
    """
    Render listings as CSV in the given order. Every cell is quoted and
    embedded quotes doubled; missing optional fields are empty cells.
    """
    if not listings:
        raise InvalidArgument("Cannot export an empty competitor list.", code="NO_RESULTS")

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for listing in listings:
        writer.writerow(
            [
                _cell(listing.name),
                _cell(listing.lat),
                _cell(listing.lng),
                _cell(listing.distance_m),
                _cell(listing.rating),
                _cell(listing.rating_count),
                _status(listing.open_now),
                _cell(listing.address),
                _cell(listing.external_url),
            ]
        )
    return buffer.getvalue()


def csv_filename(center: Coordinates) -> str:
    return f"competitors-{center.lat:.4f}-{center.lng:.4f}.csv"
