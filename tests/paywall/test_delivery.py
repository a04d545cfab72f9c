"""
Unit-тесты для build_delivery_pointer: указатель отдаётся только после погашения.
"""
import unittest
from datetime import datetime, timezone
from decimal import Decimal

from content_access.core.errors import ContentNotFound
from content_access.paywall.delivery import build_delivery_pointer
from content_access.paywall.models import AccessClassification, ContentItemView

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _item(classification, **kwargs):
    return ContentItemView(
        id="item1",
        classification=classification,
        price=kwargs.get("price", Decimal("0")),
        currency="INR",
        external_vault_reference=kwargs.get("vault"),
        storage_reference=kwargs.get("storage", "s3://bucket/notes.pdf"),
    )


class TestBuildDeliveryPointer(unittest.TestCase):
    def test_paid_points_to_storage(self):
        pointer = build_delivery_pointer(_item(AccessClassification.PAID, price=Decimal("99")), NOW)
        self.assertEqual(pointer.kind, "storage")
        self.assertEqual(pointer.reference, "s3://bucket/notes.pdf")
        self.assertEqual(pointer.content_item_id, "item1")
        self.assertEqual(pointer.redeemed_at, NOW)

    def test_free_points_to_storage(self):
        pointer = build_delivery_pointer(_item(AccessClassification.FREE), NOW)
        self.assertEqual(pointer.kind, "storage")

    def test_reclassified_to_vault_returns_vault_reference(self):
        pointer = build_delivery_pointer(
            _item(AccessClassification.VAULT_RESTRICTED, vault="https://drive.example/f/1", storage=None), NOW
        )
        self.assertEqual(pointer.kind, "vault")
        self.assertEqual(pointer.reference, "https://drive.example/f/1")

    def test_missing_storage_reference(self):
        with self.assertRaises(ContentNotFound):
            build_delivery_pointer(_item(AccessClassification.FREE, storage=None), NOW)
