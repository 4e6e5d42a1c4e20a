from decimal import Decimal


def dec(value) -> Decimal:
    """Result dicts carry decimals as strings; compare them numerically."""
    return Decimal(str(value))
