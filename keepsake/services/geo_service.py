"""Geo service — client IP to country, country to pricing.

Uses the ipinfo.io geo endpoint (https://ipinfo.io/<ip>/geo). Lookups never
raise: any failure falls back to DEFAULT_COUNTRY so checkout is never
blocked by a geolocation outage.
"""

import logging

import requests
from flask import current_app

from keepsake.services.pricing import PLANS, price_for_country

logger = logging.getLogger(__name__)


def get_client_ip(req):
    """Return the caller's IP.

    X-Forwarded-For is never read here: ProxyFix (see create_app) has already
    rewritten remote_addr from the hops appended by trusted proxies, so
    client-supplied hops cannot pick the country.
    """
    return req.remote_addr


def get_user_country(ip):
    """Resolve an IP to an ISO country code via ipinfo.io.

    Returns DEFAULT_COUNTRY on network errors, non-2xx responses, malformed
    JSON, or a response without a country field.
    """
    default = current_app.config.get("DEFAULT_COUNTRY", "US")
    if not ip:
        return default

    base_url = current_app.config.get("IPINFO_URL", "https://ipinfo.io").rstrip("/")
    params = {}
    token = current_app.config.get("IPINFO_TOKEN")
    if token:
        params["token"] = token

    try:
        resp = requests.get(
            f"{base_url}/{ip}/geo",
            params=params,
            timeout=current_app.config.get("IPINFO_TIMEOUT", 5),
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"IP geolocation failed for {ip}: {e}")
        return default

    country = data.get("country") if isinstance(data, dict) else None
    if not country or not isinstance(country, str):
        logger.warning(f"IP geolocation returned no country for {ip}")
        return default

    return country.upper()


def resolve_pricing(ip):
    """Resolve the caller's country and price every plan for it.

    Returns (country, currency, {plan_id: ResolvedPrice}).
    """
    country = get_user_country(ip)
    prices = {plan_id: price_for_country(entry, country) for plan_id, entry in PLANS.items()}
    currency = "brl" if country == "BR" else "usd"
    logger.info(f"Resolved pricing for {ip}: country={country} currency={currency}")
    return country, currency, prices
