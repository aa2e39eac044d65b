"""Below-market-value (BMV) estimate for a listing against sold comparables.

The estimate is deliberately crude: it compares the asking price with the
average of recent sales of the same property type in the same outward code.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Final

from bmv_finder.models import (
    BMVEstimate,
    Confidence,
    Listing,
    PropertySale,
    RentalComparable,
)

# Fallback assumptions when there is no comparable data
NO_COMPARABLES_PRICE_FACTOR: Final = 0.95
DEFAULT_GROSS_YIELD: Final = 0.045

_HIGH_CONFIDENCE_POINTS: Final = 5
_MEDIUM_CONFIDENCE_POINTS: Final = 2


def similar_sales(listing: Listing, sales: Sequence[PropertySale]) -> list[PropertySale]:
    """Sold prices of the same property type, excluding retractions and zero prices."""
    return [
        s
        for s in sales
        if s.property_type == listing.property_type.value and s.price > 0 and not s.is_retracted
    ]


def similar_rentals(
    listing: Listing, rentals: Sequence[RentalComparable]
) -> list[RentalComparable]:
    return [
        r
        for r in rentals
        if r.property_type == listing.property_type and r.bedrooms == listing.bedrooms
    ]


def estimate_rent_from_price(price: int) -> float:
    """Monthly rent implied by a default gross yield."""
    return price * DEFAULT_GROSS_YIELD / 12


def confidence_level(sold_points: int, rental_points: int) -> Confidence:
    total = sold_points + rental_points
    if total >= _HIGH_CONFIDENCE_POINTS:
        return "high"
    if total >= _MEDIUM_CONFIDENCE_POINTS:
        return "medium"
    return "low"


def annualised_growth(sales: Sequence[PropertySale]) -> float:
    """Simple annual growth (%) between the oldest and newest sale.

    Returns 0.0 for fewer than two sales or when they share a date.
    """
    dated: list[tuple[date, int]] = []
    for s in sales:
        try:
            dated.append((date.fromisoformat(s.transfer_date[:10]), s.price))
        except ValueError:
            continue
    if len(dated) < 2:
        return 0.0

    dated.sort(key=lambda item: item[0])
    (first_date, oldest), (last_date, newest) = dated[0], dated[-1]
    years = (last_date - first_date).days / 365
    if years == 0 or oldest == 0:
        return 0.0
    return round((newest - oldest) / oldest / years * 100, 2)


def calculate_bmv(
    listing: Listing,
    sold: Sequence[PropertySale],
    rentals: Sequence[RentalComparable] = (),
) -> BMVEstimate:
    """Estimate how far below comparable sold prices a listing is priced.

    Args:
        listing: The property for sale.
        sold: Candidate sold prices (usually the listing's outward code).
        rentals: Candidate rental comparables.

    Returns:
        BMVEstimate. A positive ``bmv_percentage`` means the asking price is below market.
    """
    comparables = similar_sales(listing, sold)
    rental_comps = similar_rentals(listing, rentals)

    if comparables:
        average_sold = sum(s.price for s in comparables) / len(comparables)
    else:
        average_sold = listing.price * NO_COMPARABLES_PRICE_FACTOR

    bmv_amount = average_sold - listing.price
    bmv_percentage = bmv_amount / average_sold * 100

    if rental_comps:
        estimated_rent = sum(r.average_rent for r in rental_comps) / len(rental_comps)
    else:
        estimated_rent = estimate_rent_from_price(listing.price)
    rental_yield = estimated_rent * 12 / listing.price * 100

    return BMVEstimate(
        listing=listing,
        average_sold_price=round(average_sold),
        bmv_amount=round(bmv_amount),
        bmv_percentage=round(bmv_percentage, 2),
        estimated_rent=round(estimated_rent),
        rental_yield=round(rental_yield, 2),
        area_growth=annualised_growth(comparables),
        comparables_used=len(comparables),
        confidence=confidence_level(len(comparables), len(rental_comps)),
    )
