"""jewelcart - order fulfillment and customer messaging for a jewelry storefront."""

__version__ = "0.1.0"
