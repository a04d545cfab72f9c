"""
Централизованный paywall для платных материалов (внутренняя библиотека).
Decision (entitlement) и execution (delivery pointer) разделены; контракт через EntitlementContext.
"""
from content_access.paywall.access import decide_entitlement
from content_access.paywall.audit import record_redemption, record_token_issued, record_vault_handoff
from content_access.paywall.delivery import build_delivery_pointer
from content_access.paywall.models import (
    AccessClassification,
    ContentItemView,
    DeliveryPointer,
    Entitlement,
    EntitlementContext,
    EntitlementDecision,
)

__all__ = [
    "AccessClassification",
    "ContentItemView",
    "DeliveryPointer",
    "Entitlement",
    "EntitlementContext",
    "EntitlementDecision",
    "decide_entitlement",
    "build_delivery_pointer",
    "record_redemption",
    "record_token_issued",
    "record_vault_handoff",
]
