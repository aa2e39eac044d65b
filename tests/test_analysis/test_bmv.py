"""Tests for below-market-value estimates."""

from collections.abc import Callable

import pytest

from bmv_finder.analysis.bmv import (
    annualised_growth,
    calculate_bmv,
    confidence_level,
    estimate_rent_from_price,
)
from bmv_finder.models import Listing, PropertySale, PropertyType, RentalComparable


@pytest.fixture
def listing() -> Listing:
    return Listing(
        address="Flat 3, 10 Mare Street",
        postcode="e8 3rh",
        price=180000,
        property_type=PropertyType.FLAT,
        bedrooms=2,
    )


class TestCalculateBmv:
    def test_below_market_listing(
        self, listing: Listing, make_sale: Callable[..., PropertySale]
    ) -> None:
        sold = [
            make_sale("A", price=190000, transfer_date="2022-01-01"),
            make_sale("B", price=210000, transfer_date="2023-01-01"),
            make_sale("H", price=900000, property_type="D"),
            make_sale("R", price=10, status="D"),
        ]
        rentals = [RentalComparable(property_type=PropertyType.FLAT, bedrooms=2, average_rent=900)]

        estimate = calculate_bmv(listing, sold, rentals)

        assert estimate.average_sold_price == 200000
        assert estimate.bmv_amount == 20000
        assert estimate.bmv_percentage == 10.0
        assert estimate.estimated_rent == 900
        assert estimate.rental_yield == 6.0
        assert estimate.comparables_used == 2
        assert estimate.confidence == "medium"
        assert estimate.area_growth > 0

    def test_no_comparables_uses_fallbacks(self, listing: Listing) -> None:
        estimate = calculate_bmv(listing, [])

        assert estimate.average_sold_price == 171000
        assert estimate.bmv_amount == -9000
        assert estimate.estimated_rent == 675
        assert estimate.rental_yield == 4.5
        assert estimate.comparables_used == 0
        assert estimate.confidence == "low"

    def test_rentals_must_match_bedrooms(self, listing: Listing) -> None:
        rentals = [RentalComparable(property_type=PropertyType.FLAT, bedrooms=3, average_rent=2000)]

        estimate = calculate_bmv(listing, [], rentals)

        assert estimate.estimated_rent == round(estimate_rent_from_price(listing.price))

    def test_listing_postcode_normalised(self, listing: Listing) -> None:
        assert listing.postcode == "E8 3RH"

    def test_camel_case_json(self, listing: Listing) -> None:
        payload = calculate_bmv(listing, []).model_dump(mode="json", by_alias=True)

        assert "bmvPercentage" in payload
        assert payload["listing"]["propertyType"] == "F"


class TestConfidence:
    @pytest.mark.parametrize(
        ("sold", "rentals", "expected"),
        [(0, 0, "low"), (1, 0, "low"), (1, 1, "medium"), (4, 0, "medium"), (3, 2, "high")],
    )
    def test_levels(self, sold: int, rentals: int, expected: str) -> None:
        assert confidence_level(sold, rentals) == expected


class TestAnnualisedGrowth:
    def test_one_year_of_growth(self, make_sale: Callable[..., PropertySale]) -> None:
        sales = [
            make_sale("A", price=100000, transfer_date="2021-01-01"),
            make_sale("B", price=110000, transfer_date="2022-01-01"),
        ]

        assert annualised_growth(sales) == 10.0

    def test_single_sale(self, make_sale: Callable[..., PropertySale]) -> None:
        assert annualised_growth([make_sale("A")]) == 0.0

    def test_same_day(self, make_sale: Callable[..., PropertySale]) -> None:
        sales = [make_sale("A", price=1), make_sale("B", price=2)]

        assert annualised_growth(sales) == 0.0
