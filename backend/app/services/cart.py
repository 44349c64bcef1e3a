"""Cart mutations over ``dict[str, int]``.

Keys are food ids, values are quantities >= 1. A missing key means zero;
a quantity never drops to zero in the map, the key is removed instead.
Every function returns a new dict so SQLAlchemy sees the JSON column change.
"""

Cart = dict[str, int]


def clean_cart(raw: dict | None) -> Cart:
    """Normalize stored cart data, dropping non-positive or non-integer entries."""
    cart: Cart = {}
    for item_id, qty in (raw or {}).items():
        if isinstance(qty, bool) or not isinstance(qty, int):
            continue
        if qty >= 1:
            cart[str(item_id)] = qty
    return cart


def add_item(cart: dict | None, item_id: str) -> Cart:
    updated = clean_cart(cart)
    updated[item_id] = updated.get(item_id, 0) + 1
    return updated


def remove_item(cart: dict | None, item_id: str) -> Cart:
    """Decrement by one; removing an absent item is a no-op."""
    updated = clean_cart(cart)
    qty = updated.get(item_id, 0)
    if qty > 1:
        updated[item_id] = qty - 1
    elif qty == 1:
        del updated[item_id]
    return updated
