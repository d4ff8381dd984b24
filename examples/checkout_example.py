"""
Checkout walkthrough — cart, price drift, promotion, order, status.

Storefront → CartService / PromotionService / CheckoutService / OrderService
"""

from dataclasses import replace

from kungfu import Ok, Error

from examples._infra import HOME, banner, must, run, storefront


async def main() -> None:
    shop = storefront()

    banner("Cart")
    await shop.add_cart_line("asha", "milk", 2)
    await shop.add_cart_line("asha", "rice", 3)
    match await shop.add_cart_line("asha", "atta", 1):
        case Ok(cart):
            for line in cart.lines:
                print(f"  {line.product_id:<6} × {line.quantity}  @ {line.current_price}")
            print(f"  total: {cart.total}")
        case Error(e):
            print(f"  ✗ {e}")

    banner("Price drift")
    rice = must(await shop.stores.products.get("rice"))
    await shop.stores.products.save(replace(rice, discount=None))

    match await shop.place_order("asha", HOME, "upi"):
        case Error(e):
            print(f"  ✗ {e.code}: lines {e.details['line_ids']}")
        case Ok(order):
            print(f"  unexpected order {order.id}")

    view = must(await shop.reconcile_cart("asha"))
    for report in view.price_drifts:
        print(f"  {report.product_id}: {report.stored_price} → {report.live_price}")
        await shop.accept_price("asha", report.line_id)
        print(f"  ✓ accepted {report.live_price}")

    banner("Promotions")
    for promotion in must(await shop.list_eligible_promotions("asha")):
        print(f"  {promotion.code}: {promotion.name}")

    match await shop.quote_checkout("asha", "FRESH15"):
        case Ok(quote):
            print(f"  subtotal {quote.subtotal}")
            print(f"  promotion −{quote.promotion_discount}")
            print(f"  delivery {quote.delivery_fee}")
            print(f"  total {quote.total}")
        case Error(e):
            print(f"  ✗ {e}")

    banner("Place order (submitted twice)")
    first = await shop.place_order("asha", HOME, "upi", "FRESH15", request_key="tap-1")
    second = await shop.place_order("asha", HOME, "upi", "FRESH15", request_key="tap-1")
    match first, second:
        case Ok(order), Ok(again):
            print(f"  ✓ {order.id} total {order.total}, payment {order.payment.status}")
            print(f"  same order on retry: {order.id == again.id}")
        case _:
            print(f"  ✗ {first} / {second}")

    banner("Stock")
    await shop.add_cart_line("ravi", "eggs", 3)
    await shop.stores.products.decrement_stock("eggs", 2)
    match await shop.place_order("ravi", HOME, "cod"):
        case Error(e):
            print(f"  ✗ {e.code}: {e.details}")
        case Ok(order):
            print(f"  unexpected order {order.id}")
    cart = must(await shop.stores.carts.get("ravi"))
    await shop.accept_stock("ravi", cart.lines[0].id)
    match await shop.place_order("ravi", HOME, "cod"):
        case Ok(order):
            print(f"  ✓ {order.id}: {order.lines[0].quantity} eggs, total {order.total}")
        case Error(e):
            print(f"  ✗ {e}")

    banner("Fulfilment")
    orders = must(await shop.list_orders("asha"))
    order_id = orders[0].id
    for status in ("confirmed", "shipped", "placed"):
        match await shop.update_order_status(order_id, status):
            case Ok(order):
                print(f"  ✓ {order.status}")
            case Error(e):
                print(f"  ✗ {e}")


if __name__ == "__main__":
    run(main)
