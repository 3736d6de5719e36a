from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from core.enums import PaymentChannelType


@dataclass(slots=True, frozen=True)
class PaymentMethod:
    key: str
    label: str
    channel_type: str
    gateway_code: str


PAYMENT_METHODS: tuple[PaymentMethod, ...] = (
    PaymentMethod("qris", "QRIS", PaymentChannelType.QRIS.value, "QRIS"),
    PaymentMethod("dana", "DANA", PaymentChannelType.EWALLET.value, "DANA"),
    PaymentMethod("gopay", "GoPay", PaymentChannelType.EWALLET.value, "GOPAY"),
    PaymentMethod("ovo", "OVO", PaymentChannelType.EWALLET.value, "OVO"),
    PaymentMethod("shopeepay", "ShopeePay", PaymentChannelType.EWALLET.value, "SHOPEEPAY"),
)

BANKS: tuple[PaymentMethod, ...] = (
    PaymentMethod("bca", "BCA", PaymentChannelType.VIRTUAL_ACCOUNT.value, "BCA"),
    PaymentMethod("bni", "BNI", PaymentChannelType.VIRTUAL_ACCOUNT.value, "BNI"),
    PaymentMethod("bri", "BRI", PaymentChannelType.VIRTUAL_ACCOUNT.value, "BRI"),
    PaymentMethod("mandiri", "Mandiri", PaymentChannelType.VIRTUAL_ACCOUNT.value, "MANDIRI"),
    PaymentMethod("permata", "Permata", PaymentChannelType.VIRTUAL_ACCOUNT.value, "PERMATA"),
)


class PaymentMethodRegistry:
    """Numbered payment and bank menus, filtered by the ``payment.methods`` config."""

    def __init__(self, disabled: set[str] | None = None) -> None:
        disabled = {item.lower() for item in (disabled or set())}
        self.methods = tuple(item for item in PAYMENT_METHODS if item.key not in disabled)
        self.banks = tuple(item for item in BANKS if item.key not in disabled)
        self.bank_transfer_enabled = "bank" not in disabled and bool(self.banks)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "PaymentMethodRegistry":
        raw = config.get("payment", {}).get("disabled_methods", [])
        return cls(disabled={str(item).strip() for item in raw if str(item).strip()} if isinstance(raw, list) else set())

    def resolve_payment(self, text: str) -> PaymentMethod | None:
        return _resolve(self.methods, text)

    def is_bank_transfer(self, text: str) -> bool:
        choice = str(text or "").strip().lower()
        if not self.bank_transfer_enabled:
            return False
        return choice in ("bank", "transfer") or choice == str(len(self.methods) + 1)

    def resolve_bank(self, text: str) -> PaymentMethod | None:
        return _resolve(self.banks, text)


def _resolve(options: tuple[PaymentMethod, ...], text: str) -> PaymentMethod | None:
    choice = str(text or "").strip().lower()
    if not choice:
        return None
    if choice.isdigit():
        index = int(choice) - 1
        if 0 <= index < len(options):
            return options[index]
        return None
    for option in options:
        if choice in (option.key, option.label.lower(), option.gateway_code.lower()):
            return option
    return None
