"""Stripe price id -> plan slug / addon code mapping"""
import logging
from datetime import datetime, timezone
from typing import Dict, NamedTuple, Optional

import stripe

from billing_webhooks.core.config import settings

logger = logging.getLogger(__name__)

PLAN = "plan"
ADDON = "addon"


class PriceMapping(NamedTuple):
    kind: str  # PLAN or ADDON
    code: str  # plan slug or addon code


class StripeRegistry:
    """
    Single source of truth for Stripe Price ID mappings.

    Seeded from settings (STRIPE_PLAN_PRICES / STRIPE_ADDON_PRICES) and optionally
    refreshed from the Stripe API using price lookup keys:
    '<plan>_price' for plans and 'addon_<code>_price' for addons.
    """
    _cache: Dict[str, PriceMapping] = {}
    _last_sync: Optional[datetime] = None

    @classmethod
    def load_from_settings(cls):
        new_cache = {}
        for price_id, plan_slug in settings.STRIPE_PLAN_PRICES.items():
            new_cache[price_id] = PriceMapping(PLAN, plan_slug)
        for price_id, addon_code in settings.STRIPE_ADDON_PRICES.items():
            new_cache[price_id] = PriceMapping(ADDON, addon_code)
        cls._cache = new_cache
        if not cls.is_configured():
            logger.warning("No Stripe plan prices configured; subscription plans will not be remapped")
        return len(new_cache)

    @classmethod
    def sync(cls):
        """Merge active prices with lookup keys from Stripe into the registry."""
        if not settings.STRIPE_SECRET_KEY:
            logger.error("Stripe secret key not configured.")
            return 0

        stripe.api_key = settings.STRIPE_SECRET_KEY
        try:
            prices = stripe.Price.list(active=True, limit=100).data
        except stripe.StripeError as e:
            logger.error(f"Failed to sync Stripe prices: {e}")
            return 0

        synced = 0
        for p in prices:
            mapping = cls._mapping_from_lookup_key(getattr(p, "lookup_key", None))
            if mapping:
                cls._cache[p.id] = mapping
                synced += 1
        cls._last_sync = datetime.now(timezone.utc)
        logger.info(f"Stripe price registry synced: {synced} prices mapped")
        return synced

    @staticmethod
    def _mapping_from_lookup_key(lookup_key: Optional[str]) -> Optional[PriceMapping]:
        if not lookup_key or not lookup_key.endswith("_price"):
            return None
        key = lookup_key[:-len("_price")]
        if key.endswith("_overage"):
            return None
        if key.startswith("addon_"):
            return PriceMapping(ADDON, key[len("addon_"):])
        return PriceMapping(PLAN, key)

    @classmethod
    def register(cls, price_id: str, kind: str, code: str):
        cls._cache[price_id] = PriceMapping(kind, code)

    @classmethod
    def clear(cls):
        cls._cache = {}
        cls._last_sync = None

    @classmethod
    def get(cls, price_id: Optional[str]) -> Optional[PriceMapping]:
        if not price_id:
            return None
        return cls._cache.get(price_id)

    @classmethod
    def last_sync(cls) -> Optional[datetime]:
        """When prices were last pulled from Stripe (None if only seeded from settings)"""
        return cls._last_sync

    @classmethod
    def is_configured(cls) -> bool:
        return any(m.kind == PLAN for m in cls._cache.values())


def get_plan_for_price(price_id: Optional[str]) -> Optional[str]:
    mapping = StripeRegistry.get(price_id)
    return mapping.code if mapping and mapping.kind == PLAN else None


def get_addon_for_price(price_id: Optional[str]) -> Optional[str]:
    mapping = StripeRegistry.get(price_id)
    return mapping.code if mapping and mapping.kind == ADDON else None
