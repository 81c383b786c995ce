"""Sellable product configuration.

Products are declared in config (STRIPE_PRODUCTS), not managed here. This
module only answers "is this price ID something we sell, and in which
checkout mode?".
"""

from collections import namedtuple

from flask import current_app

CHECKOUT_MODES = ("payment", "subscription")

Product = namedtuple("Product", ["price_id", "name", "mode", "amount", "currency"])


def load_products(entries):
    """Build Product tuples from the raw config list, keyed by price ID."""
    products = {}
    for entry in entries:
        mode = entry.get("mode", "payment")
        if mode not in CHECKOUT_MODES:
            raise ValueError(
                f"Product {entry.get('priceId')!r} has unsupported mode {mode!r}"
            )
        product = Product(
            price_id=entry["priceId"],
            name=entry.get("name", entry["priceId"]),
            mode=mode,
            amount=entry.get("amount"),
            currency=(entry.get("currency") or "usd").lower(),
        )
        products[product.price_id] = product
    return products


def get_product(price_id):
    """Return the configured Product for price_id, or None."""
    return load_products(current_app.config.get("STRIPE_PRODUCTS", [])).get(price_id)


def all_products():
    return list(load_products(current_app.config.get("STRIPE_PRODUCTS", [])).values())
