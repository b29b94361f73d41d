DEFAULT_CURRENCY = "LKR"

CURRENCIES: dict[str, dict[str, str]] = {
    "LKR": {"symbol": "Rs.", "name": "Sri Lankan Rupee"},
    "USD": {"symbol": "$", "name": "US Dollar"},
    "EUR": {"symbol": "€", "name": "Euro"},
    "GBP": {"symbol": "£", "name": "British Pound"},
    "CAD": {"symbol": "C$", "name": "Canadian Dollar"},
    "AED": {"symbol": "د.إ", "name": "UAE Dirham"},
    "AUD": {"symbol": "A$", "name": "Australian Dollar"},
    "NZD": {"symbol": "NZ$", "name": "New Zealand Dollar"},
    "SGD": {"symbol": "S$", "name": "Singapore Dollar"},
}

EXPENSE_CATEGORIES = ["Food", "Transport", "Entertainment", "Bills", "Shopping", "Health", "Other"]
INCOME_CATEGORIES = ["Salary", "Freelancing", "Gifts", "Investment Returns", "Other"]
RECURRING_CATEGORIES = ["Bills", "Subscriptions", "Rent", "Insurance", "Other"]

# materialized recurring charges land in the expense ledger with their own category
LEDGER_EXPENSE_CATEGORIES = EXPENSE_CATEGORIES + [c for c in RECURRING_CATEGORIES if c not in EXPENSE_CATEGORIES]


def currency_symbol(code: str | None) -> str:
    entry = CURRENCIES.get((code or "").upper())
    return entry["symbol"] if entry else CURRENCIES[DEFAULT_CURRENCY]["symbol"]
