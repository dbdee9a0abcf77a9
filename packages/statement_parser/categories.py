"""Built-in transaction category catalogues.

Two catalogues ship with the package, keyed by country code. Each entry is a
``Category(code, label)``; ``code`` is what gets persisted and what the
categorizer accepts back from the model. ``"other"`` is present in every
catalogue and is the fallback for anything the model cannot place.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

FALLBACK_CATEGORY = "other"


@dataclass(frozen=True, slots=True)
class Category:
    code: str
    label: str


_SHARED_HEAD: tuple[Category, ...] = (
    Category("food_dining", "Food & Dining"),
    Category("groceries", "Groceries"),
    Category("shopping", "Shopping"),
)

_SHARED_TAIL: tuple[Category, ...] = (
    Category("entertainment", "Entertainment"),
    Category("travel", "Travel"),
    Category("healthcare", "Healthcare"),
    Category("personal_care", "Personal Care & Fitness"),
    Category("gifts", "Gifts & Flowers"),
    Category("education", "Education"),
    Category("insurance", "Insurance"),
    Category("investment", "Investment"),
    Category("software", "Software & Services"),
    Category("transfer", "Transfer"),
    Category("atm_withdrawal", "ATM Withdrawal"),
)

_CLOSING: tuple[Category, ...] = (
    Category("charity", "Charity / Donations"),
    Category("dividend", "Dividend"),
    Category("interest", "Interest"),
    Category("credit_card_payment", "Credit Card Payment"),
    Category("bank_charges", "Bank Charges / Fees"),
    Category("forex", "Foreign Exchange"),
    Category(FALLBACK_CATEGORY, "Other"),
)

CATEGORIES: dict[str, tuple[Category, ...]] = {
    "US": (
        *_SHARED_HEAD,
        Category("utilities", "Utilities"),
        Category("phone_internet", "Phone & Internet"),
        Category("mortgage", "Mortgage"),
        Category("rent", "Rent"),
        Category("gas", "Gas / Fuel"),
        *_SHARED_TAIL,
        Category("paycheck", "Paycheck / Income"),
        Category("refund", "Refund"),
        Category("cashback", "Cashback / Rewards"),
        Category("tax", "Tax Payment"),
        Category("childcare", "Childcare"),
        Category("pet", "Pet Expenses"),
        *_CLOSING,
    ),
    "IN": (
        *_SHARED_HEAD,
        Category("utilities", "Utilities (Electricity, Water, Gas)"),
        Category("mobile_internet", "Mobile & Internet"),
        Category("emi", "EMI / Loan Payment"),
        Category("rent", "Rent"),
        Category("fuel", "Fuel"),
        *_SHARED_TAIL,
        Category("salary", "Salary / Income"),
        Category("refund", "Refund"),
        Category("cashback", "Cashback / Rewards"),
        Category("tax", "Tax Payment"),
        Category("government", "Government Services"),
        *_CLOSING,
    ),
}


def categories_for_country(country: str) -> tuple[Category, ...]:
    """Return the catalogue for ``country`` (``US`` or ``IN``); unknown codes get ``US``."""

    return CATEGORIES.get(country.strip().upper(), CATEGORIES["US"])


def allowed_codes(categories: Sequence[Category]) -> frozenset[str]:
    codes = {c.code for c in categories}
    codes.add(FALLBACK_CATEGORY)
    return frozenset(codes)


__all__ = [
    "FALLBACK_CATEGORY",
    "Category",
    "CATEGORIES",
    "categories_for_country",
    "allowed_codes",
]
