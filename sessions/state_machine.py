from __future__ import annotations

from core.enums import SessionStep
from core.errors import ValidationError

STEP_MENU = SessionStep.MENU.value
STEP_BROWSING = SessionStep.BROWSING.value
STEP_CHECKOUT = SessionStep.CHECKOUT.value
STEP_SELECT_PAYMENT = SessionStep.SELECT_PAYMENT.value
STEP_SELECT_BANK = SessionStep.SELECT_BANK.value
STEP_AWAITING_PAYMENT = SessionStep.AWAITING_PAYMENT.value
STEP_AWAITING_ADMIN_APPROVAL = SessionStep.AWAITING_ADMIN_APPROVAL.value

_ALLOWED: dict[str, set[str]] = {
    STEP_MENU: {STEP_BROWSING, STEP_CHECKOUT},
    STEP_BROWSING: {STEP_MENU, STEP_CHECKOUT},
    STEP_CHECKOUT: {STEP_MENU, STEP_SELECT_PAYMENT},
    STEP_SELECT_PAYMENT: {STEP_MENU, STEP_CHECKOUT, STEP_SELECT_BANK, STEP_AWAITING_PAYMENT},
    STEP_SELECT_BANK: {STEP_MENU, STEP_CHECKOUT, STEP_AWAITING_PAYMENT},
    STEP_AWAITING_PAYMENT: {STEP_MENU, STEP_CHECKOUT, STEP_AWAITING_ADMIN_APPROVAL},
    STEP_AWAITING_ADMIN_APPROVAL: {STEP_MENU},
}


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return current in _ALLOWED
    return target in _ALLOWED.get(current, set())


def require_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise ValidationError(f"illegal step transition: {current} -> {target}")


def is_known_step(step: str) -> bool:
    return step in _ALLOWED
