from __future__ import annotations

from typing import Iterable, Sequence

from core.enums import OrderOutcome, PaymentStatus
from core.models import CartItem, Order, Product
from delivery.credential_store import Credential
from payments.channels import PaymentMethod

DIVIDER = "------------------------------"


def format_idr(amount: int) -> str:
    return "Rp " + f"{int(amount):,}".replace(",", ".")


def build_main_menu_message(shop_name: str, error_prefix: str | None = None) -> str:
    lines: list[str] = []
    if error_prefix:
        lines += [error_prefix, ""]
    lines += [
        f"Welcome to {shop_name}!",
        "",
        "1. Browse products",
        "2. View cart",
        "3. About us",
        "4. Contact",
        "",
        "Reply with a number. Type 'menu' any time to come back here.",
        "Type 'wishlist' to see the products you saved.",
    ]
    return "\n".join(lines)


def build_product_list_message(products: Sequence[Product]) -> str:
    if not products:
        return "No products are available right now. Type 'menu' to go back."
    lines = ["Available products:", ""]
    for index, product in enumerate(products, start=1):
        availability = f"stock {product.stock}" if product.stock > 0 else "out of stock"
        lines.append(f"{index}. {product.name} ({product.id}) - {format_idr(product.unit_price)} [{availability}]")
        if product.description:
            lines.append(f"   {product.description}")
    lines += ["", "Type a product name or id to add it to your cart.", "Type 'cart' to review your cart."]
    return "\n".join(lines)


def build_product_added_message(item: CartItem, cart_size: int) -> str:
    return (
        f"Added {item.name} ({format_idr(item.unit_price)}) to your cart.\n"
        f"Items in cart: {cart_size}\n\n"
        "Add more products, or type 'cart' to check out."
    )


def build_product_not_found_message(query: str) -> str:
    return f"Sorry, no product matches '{query[:50]}'. Try another name, or type 'menu'."


def build_wishlist_message(products: Sequence[Product]) -> str:
    if not products:
        return "Your wishlist is empty. Type 'save <product>' to keep a product for later."
    lines = ["Your wishlist:", ""]
    for index, product in enumerate(products, start=1):
        availability = "" if product.stock > 0 else " [out of stock]"
        lines.append(f"{index}. {product.name} ({product.id}) - {format_idr(product.unit_price)}{availability}")
    lines += ["", "Type 'move <product>' to put one in your cart, or 'unsave <product>' to drop it."]
    return "\n".join(lines)


def build_wishlist_saved_message(product: Product, added: bool) -> str:
    if not added:
        return f"{product.name} is already in your wishlist."
    return f"Saved {product.name} to your wishlist. Type 'wishlist' to see it."


def build_wishlist_removed_message(product: Product, removed: bool) -> str:
    if not removed:
        return f"{product.name} is not in your wishlist."
    return f"Removed {product.name} from your wishlist."


def build_cart_message(cart: Sequence[CartItem], promo_code: str | None = None, discount_percent: int = 0) -> str:
    if not cart:
        return "Your cart is empty. Type '1' from the menu to browse products."
    subtotal = sum(item.unit_price for item in cart)
    lines = ["Your cart:", ""]
    for index, item in enumerate(cart, start=1):
        lines.append(f"{index}. {item.name} - {format_idr(item.unit_price)}")
    lines += ["", f"Subtotal: {format_idr(subtotal)}"]
    if promo_code:
        discount = (subtotal * discount_percent) // 100
        lines.append(f"Promo {promo_code} (-{discount_percent}%): -{format_idr(discount)}")
        lines.append(f"Total: {format_idr(subtotal - discount)}")
    lines += [
        "",
        "Type 'checkout' to pay, 'promo <CODE>' to apply a promo,",
        "'clear' to empty the cart, or 'menu' to keep shopping.",
    ]
    return "\n".join(lines)


def build_checkout_prompt_message() -> str:
    return "Type 'checkout' to continue, 'promo <CODE>' to apply a promo, or 'clear' to empty your cart."


def build_cart_cleared_message() -> str:
    return "Your cart has been cleared."


def build_promo_applied_message(code: str, discount_percent: int) -> str:
    return f"Promo {code} applied: {discount_percent}% off at checkout."


def build_promo_rejected_message(reason: str) -> str:
    return f"Promo not applied: {reason}"


def build_payment_menu_message(order: Order, methods: Sequence[PaymentMethod], bank_transfer: bool) -> str:
    lines = [
        f"Order {order.order_id}",
        f"Total: {format_idr(order.total_amount)}",
    ]
    if order.discount_amount:
        lines.append(f"Discount applied: -{format_idr(order.discount_amount)} ({order.promo_code})")
    lines += ["", "Choose a payment method:"]
    for index, method in enumerate(methods, start=1):
        lines.append(f"{index}. {method.label}")
    if bank_transfer:
        lines.append(f"{len(methods) + 1}. Bank transfer (virtual account)")
    return "\n".join(lines)


def build_bank_menu_message(banks: Sequence[PaymentMethod]) -> str:
    lines = ["Choose your bank:"]
    for index, bank in enumerate(banks, start=1):
        lines.append(f"{index}. {bank.label}")
    return "\n".join(lines)


def build_payment_instructions_message(
    order: Order,
    method: PaymentMethod,
    details: dict[str, str],
    checkout_url: str | None,
) -> str:
    lines = [
        f"Payment for order {order.order_id}",
        f"Method: {method.label}",
        f"Amount: {format_idr(order.total_amount)}",
    ]
    account_number = details.get("account_number")
    if account_number:
        lines.append(f"Virtual account: {account_number}")
    if checkout_url:
        lines.append(f"Pay here: {checkout_url}")
    lines += [
        "",
        "After paying, type 'status' to confirm.",
        "You can also send a screenshot of your payment for manual verification.",
    ]
    return "\n".join(lines)


def build_gateway_error_message() -> str:
    return "We could not open the payment channel right now. Please try the same choice again in a moment."


def build_waiting_payment_message(order_id: str | None) -> str:
    return (
        f"We are waiting for your payment for order {order_id or '-'}.\n"
        "Type 'status' to check it, or send your payment proof as an image."
    )


def build_payment_pending_message(order_id: str | None) -> str:
    return f"Payment for order {order_id or '-'} is still pending. Type 'status' again after paying."


def build_payment_confirmed_message(order_id: str) -> str:
    return f"Payment for order {order_id} confirmed. Your products are on the way."


def build_payment_closed_message(order_id: str, outcome: str) -> str:
    if outcome == PaymentStatus.EXPIRED.value or outcome == OrderOutcome.EXPIRED.value:
        reason = "has expired"
    else:
        reason = "failed"
    return f"Payment for order {order_id} {reason}. Your cart is cleared; type 'menu' to start again."


def build_already_processed_message(order_id: str) -> str:
    return f"Order {order_id} has already been processed."


def build_proof_received_message(order_id: str | None) -> str:
    return (
        f"Thanks! We received your payment proof for order {order_id or '-'}.\n"
        "An admin will verify it shortly."
    )


def build_awaiting_verification_message() -> str:
    return "Your payment is being verified by our team. We will message you as soon as it is approved."


def build_payment_rejected_message(order_id: str) -> str:
    return (
        f"We could not verify your payment for order {order_id}, so the order was cancelled.\n"
        "If you already paid, reply with 'menu' and contact us with your receipt."
    )


def build_delivery_message(order_id: str, delivered: Iterable[tuple[CartItem, Credential]], missing: Sequence[CartItem]) -> str:
    lines = ["Your account details", f"Order ID: {order_id}", DIVIDER]
    for index, (item, credential) in enumerate(delivered, start=1):
        lines.append(f"{index}. {item.name}")
        if credential.email and credential.password:
            lines.append(f"   Email: {credential.email}")
            lines.append(f"   Password: {credential.password}")
        else:
            lines.append(f"   {credential.raw}")
    if missing:
        lines += [DIVIDER, "Not yet available:"]
        lines += [f"- {item.name}" for item in missing]
        lines.append("Our team has been notified and will send these shortly.")
    lines += [DIVIDER, "Please change the password after logging in. Thank you for your order!"]
    return "\n".join(lines)


def build_order_history_message(orders: Sequence[Order]) -> str:
    if not orders:
        return "You have no orders yet."
    lines = ["Your recent orders:"]
    for order in orders:
        lines.append(f"- {order.order_id}: {format_idr(order.total_amount)} [{_order_state(order)}]")
    lines.append("Type 'track <order id>' for details.")
    return "\n".join(lines)


def build_order_detail_message(order: Order) -> str:
    lines = [
        f"Order {order.order_id}",
        f"Status: {_order_state(order)}",
        f"Created: {order.created_at[:19].replace('T', ' ')}",
    ]
    lines += [f"- {item.name} {format_idr(item.unit_price)}" for item in order.items]
    lines.append(f"Total: {format_idr(order.total_amount)}")
    return "\n".join(lines)


def build_order_not_found_message(order_id: str) -> str:
    return f"Order {order_id} was not found."


def build_out_of_stock_message(product_name: str) -> str:
    return (
        f"Sorry, {product_name} is out of stock. Your cart was not changed.\n"
        "Type 'clear' to empty it, or 'menu' to keep browsing."
    )


def build_empty_cart_message() -> str:
    return "Your cart is empty. Type '1' from the menu to browse products."


def build_rate_limited_message(reason: str | None) -> str:
    return reason or "You are sending messages too quickly. Please slow down."


def build_cooldown_message() -> str:
    return "Something went wrong a moment ago. Please wait a minute before trying again."


def build_error_message() -> str:
    return "Sorry, something went wrong on our side. Please try again in a minute."


def build_about_message(shop_name: str, about: str) -> str:
    return f"About {shop_name}\n\n{about}\n\nType 'menu' to go back."


def build_contact_message(contact: str) -> str:
    return f"Contact us\n\n{contact}\n\nType 'menu' to go back."


def build_admin_proof_alert(customer_id: str, order_id: str | None, total_amount: int | None) -> str:
    amount = format_idr(total_amount) if total_amount is not None else "-"
    return (
        "Payment proof received\n"
        f"Customer: {customer_id}\n"
        f"Order: {order_id or '-'}\n"
        f"Amount: {amount}\n"
        f"Verify and reply: /approve {order_id or '<orderId>'}\n"
        f"Or cancel it: /reject {order_id or '<orderId>'}"
    )


def build_admin_shortfall_alert(order_id: str, customer_id: str, missing: Sequence[CartItem]) -> str:
    names = ", ".join(f"{item.name} ({item.product_id})" for item in missing)
    return (
        "Delivery shortfall\n"
        f"Order: {order_id}\n"
        f"Customer: {customer_id}\n"
        f"Missing credentials: {names}"
    )


def build_admin_paid_after_close_alert(order_id: str, customer_id: str, outcome: str, reference: str | None) -> str:
    return (
        "Payment received for a closed order\n"
        f"Order: {order_id} ({outcome})\n"
        f"Customer: {customer_id}\n"
        f"Reference: {reference or '-'}\n"
        "Nothing was delivered. Refund or deliver manually."
    )


def build_admin_unknown_payment_alert(reference: str, order_id: str | None) -> str:
    return (
        "Payment for an unknown order\n"
        f"Reference: {reference or '-'}\n"
        f"Order: {order_id or '-'}\n"
        "Check the gateway dashboard and deliver manually if needed."
    )


def _order_state(order: Order) -> str:
    if order.outcome:
        return order.outcome.replace("_", " ")
    if order.payment_reference:
        return "awaiting payment"
    return "pending"
