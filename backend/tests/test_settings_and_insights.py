from datetime import date
from decimal import Decimal
from uuid import uuid4

from fastapi.testclient import TestClient

from expense_tracker import main
from expense_tracker.main import app
from expense_tracker.schemas import BudgetStatus, UserSettings
from expense_tracker.services import insights

client = TestClient(app)


def owner() -> dict[str, str]:
    return {"X-User-Id": str(uuid4())}


def expense(day: date, amount: str, category: str = "Food") -> dict:
    return {"date": day, "amount": Decimal(amount), "category": category, "description": ""}


def test_settings_default_then_partial_upsert() -> None:
    headers = owner()
    defaults = client.get("/api/v1/settings", headers=headers).json()
    assert defaults["currency"] == "LKR"
    assert defaults["monthlyBudget"] == "0"

    updated = client.put("/api/v1/settings", json={"currency": "usd", "monthlyBudget": 50000}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["currency"] == "USD"

    savings = client.put("/api/v1/settings/savings", json={"emergencyCurrent": 1200}, headers=headers).json()
    assert savings["currency"] == "USD"
    assert savings["monthlyBudget"] == "50000"
    assert savings["emergencyCurrent"] == "1200"


def test_unsupported_currency_returns_422() -> None:
    res = client.put("/api/v1/settings", json={"currency": "XYZ"}, headers=owner())
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"


def test_negative_goal_returns_422() -> None:
    res = client.put("/api/v1/settings", json={"investmentGoal": -1}, headers=owner())
    assert res.status_code == 422


def test_budget_endpoint_counts_only_current_month(monkeypatch) -> None:
    monkeypatch.setattr(main, "_today", lambda: date(2024, 5, 20))
    headers = owner()
    client.put("/api/v1/settings", json={"monthlyBudget": 50000}, headers=headers)
    for day, amount in (("2024-05-02", 30000), ("2024-05-18", 6000), ("2024-04-30", 9000)):
        client.post(
            "/api/v1/transactions",
            json={"amount": amount, "category": "Shopping", "occurredOn": day},
            headers=headers,
        )

    budget = client.get("/api/v1/insights/budget", headers=headers).json()

    assert budget["spent"] == "36000"
    assert budget["remaining"] == "14000"
    assert budget["percentage"] == 72.0
    assert budget["status"] == "warning"


def test_budget_status_thresholds() -> None:
    assert insights.budget_status(Decimal("100"), Decimal("0")).status == BudgetStatus.unset
    assert insights.budget_status(Decimal("690"), Decimal("1000")).status == BudgetStatus.good
    assert insights.budget_status(Decimal("700"), Decimal("1000")).status == BudgetStatus.warning
    assert insights.budget_status(Decimal("900"), Decimal("1000")).status == BudgetStatus.danger

    over = insights.budget_status(Decimal("1500"), Decimal("1000"))
    assert over.percentage == 100.0
    assert over.remaining == Decimal("-500")


def test_dashboard_stats_window_and_top_category() -> None:
    today = date(2024, 5, 20)
    rows = [
        expense(date(2024, 5, 13), "100", "Food"),
        expense(date(2024, 5, 12), "400", "Transport"),
        expense(date(2024, 5, 19), "50", "Food"),
        expense(date(2024, 4, 28), "1000", "Bills"),
    ]

    stats = insights.dashboard_stats(rows, today, "usd")

    assert stats.thisMonth == Decimal("550")
    assert stats.last7Days == Decimal("150")
    assert stats.topCategory == "Bills"
    assert stats.currencySymbol == "$"


def test_dashboard_stats_without_expenses() -> None:
    stats = insights.dashboard_stats([], date(2024, 5, 20))
    assert stats.topCategory is None
    assert stats.currencySymbol == "Rs."


def test_spending_insights_month_comparison_and_breakdowns() -> None:
    today = date(2024, 5, 20)
    expenses = [
        expense(date(2024, 5, 6), "300", "Food"),  # Monday
        expense(date(2024, 5, 6), "100", "Transport"),
        expense(date(2024, 5, 11), "200", "Food"),  # Saturday
        expense(date(2024, 4, 16), "400", "Bills"),  # Tuesday
        expense(date(2023, 12, 1), "1000", "Shopping"),
    ]
    income = [{"date": date(2024, 5, 1), "amount": Decimal("5000"), "category": "Salary"}]

    result = insights.spending_insights(expenses, income, today)

    assert result.thisMonthTotal == Decimal("600")
    assert result.lastMonthTotal == Decimal("400")
    assert result.monthDifference == Decimal("200")
    assert result.monthPercentChange == 50.0
    assert [c.category for c in result.topCategories] == ["Shopping", "Food", "Bills", "Transport"]
    assert result.topCategories[1].percentage == 25.0
    assert result.totalExpenses == Decimal("2000")
    assert result.netBalance == Decimal("3000")
    assert result.savingsRate == 60.0
    assert result.averageDailySpending == Decimal("500.00")
    assert [d.day for d in result.byDayOfWeek][0] == "Monday"
    assert result.byDayOfWeek[0].amount == Decimal("400")
    assert result.byDayOfWeek[5].amount == Decimal("200")
    assert result.topSpendingDay == "Friday"
    assert [m.month for m in result.lastSixMonths] == [
        "2023-12",
        "2024-01",
        "2024-02",
        "2024-03",
        "2024-04",
        "2024-05",
    ]
    assert result.lastSixMonths[0].amount == Decimal("1000")
    assert result.lastSixMonths[-1].label == "May"


def test_spending_insights_without_last_month_has_zero_change() -> None:
    result = insights.spending_insights([expense(date(2024, 5, 6), "300")], [], date(2024, 5, 20))
    assert result.monthPercentChange == 0.0
    assert result.lastMonthTotal == Decimal("0")
    assert result.savingsRate == 0.0
    assert result.topSpendingDay == "Monday"


def test_savings_progress_caps_and_totals() -> None:
    progress = insights.savings_progress(
        UserSettings(
            regularSavingsGoal=Decimal("1000"),
            regularSavingsCurrent=Decimal("250"),
            emergencyGoal=Decimal("500"),
            emergencyCurrent=Decimal("800"),
        )
    )

    by_name = {g.name: g for g in progress.goals}
    assert by_name["Regular Savings"].percentage == 25.0
    assert by_name["Emergency Fund"].percentage == 100.0
    assert by_name["Emergency Fund"].remaining == Decimal("0")
    assert by_name["Investments"].percentage == 0.0
    assert progress.totalGoal == Decimal("1500")
    assert progress.totalSaved == Decimal("1050")
    assert progress.overallPercentage == 70.0


def test_savings_endpoint_uses_stored_settings() -> None:
    headers = owner()
    client.put("/api/v1/settings", json={"regularSavingsGoal": 2000}, headers=headers)
    client.put("/api/v1/settings/savings", json={"regularSavingsCurrent": 500}, headers=headers)

    progress = client.get("/api/v1/insights/savings", headers=headers).json()

    assert progress["goals"][0]["name"] == "Regular Savings"
    assert progress["goals"][0]["percentage"] == 25.0


def test_reference_data_and_health() -> None:
    currencies = client.get("/api/v1/currencies").json()
    assert {"code": "LKR", "symbol": "Rs.", "name": "Sri Lankan Rupee"} in currencies
    assert len(currencies) == 9

    categories = client.get("/api/v1/categories").json()
    assert "Rent" in categories["recurring"]
    assert "Salary" in categories["income"]

    health = client.get("/api/v1/health").json()
    assert health == {"status": "ok", "storage": "memory"}
