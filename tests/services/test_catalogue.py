"""Tests for CatalogueService: валидация материалов при каждом чтении."""
from decimal import Decimal

import pytest

from content_access.core.errors import ContentNotFound, ValidationFailed
from content_access.paywall.models import AccessClassification
from content_access.services.catalogue.service import CatalogueService


def test_get_item_returns_view(db, make_item):
    item = make_item("paid", price=Decimal("249.50"), currency="inr")
    view = CatalogueService(db).get_item(item.id)
    assert view.classification == AccessClassification.PAID
    assert view.price == Decimal("249.50")
    assert view.currency == "INR"


def test_missing_item(db):
    with pytest.raises(ContentNotFound):
        CatalogueService(db).get_item("nope")


def test_empty_id(db):
    with pytest.raises(ValidationFailed):
        CatalogueService(db).get_item("")


def test_unknown_classification_rejected(db, make_item):
    item = make_item("premium", price=Decimal("0"))
    with pytest.raises(ValidationFailed):
        CatalogueService(db).get_item(item.id)


def test_price_on_free_item_rejected(db, make_item):
    item = make_item("free", price=Decimal("10"))
    with pytest.raises(ValidationFailed):
        CatalogueService(db).get_item(item.id)


def test_paid_item_requires_positive_price(db, make_item):
    item = make_item("paid", price=Decimal("0"))
    with pytest.raises(ValidationFailed):
        CatalogueService(db).get_item(item.id)


def test_vault_reference_only_on_vault_items(db, make_item):
    item = make_item("free", vault="https://drive.example/f/1")
    with pytest.raises(ValidationFailed):
        CatalogueService(db).get_item(item.id)


def test_vault_item_requires_reference(db, make_item):
    item = make_item("vault_restricted", vault=None)
    with pytest.raises(ValidationFailed):
        CatalogueService(db).get_item(item.id)


def test_legacy_alias_accepted(db, make_item):
    item = make_item("drive_protected", vault="https://drive.example/f/1")
    assert CatalogueService(db).get_item(item.id).classification == AccessClassification.VAULT_RESTRICTED
