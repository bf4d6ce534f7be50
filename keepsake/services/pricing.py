"""Plan catalog — static prices per plan, in USD and BRL cents.

The table is built once at import time and exposed read-only; checkout
looks plans up by their integer id.
"""

from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class PricingEntry:
    plan_id: int
    price_usd_cents: int
    price_brl_cents: int
    name_en: str
    name_pt: str


@dataclass(frozen=True)
class ResolvedPrice:
    """A plan priced for one country: what goes into a Stripe line item."""

    plan_id: int
    currency: str
    unit_amount: int
    name: str


PLANS = MappingProxyType({
    1: PricingEntry(
        plan_id=1,
        price_usd_cents=499,
        price_brl_cents=1649,
        name_en="One year plan, 4 photos and no music",
        name_pt="Plano de 1 ano, 4 fotos e sem música",
    ),
    2: PricingEntry(
        plan_id=2,
        price_usd_cents=949,
        price_brl_cents=2999,
        name_en="Lifetime plan, 8 photos and with music",
        name_pt="Plano vitalício, 8 fotos e com música",
    ),
})


def get_plan(plan_id):
    """Return the PricingEntry for plan_id, or None if unknown.

    Accepts ints or numeric strings (JSON bodies sometimes send "1").
    """
    if isinstance(plan_id, str) and plan_id.strip().isdigit():
        plan_id = int(plan_id)
    if isinstance(plan_id, bool) or not isinstance(plan_id, int):
        return None
    return PLANS.get(plan_id)


def price_for_country(entry, country):
    """Price a plan for a country code. Brazil pays in BRL, everyone else in USD."""
    if country == "BR":
        return ResolvedPrice(entry.plan_id, "brl", entry.price_brl_cents, entry.name_pt)
    return ResolvedPrice(entry.plan_id, "usd", entry.price_usd_cents, entry.name_en)
