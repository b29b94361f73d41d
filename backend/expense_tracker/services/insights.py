from __future__ import annotations

import calendar
from collections import defaultdict
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from ..currencies import currency_symbol
from ..schemas import (
    BudgetStatus,
    BudgetStatusResponse,
    CategoryShare,
    DashboardStatsResponse,
    MonthTotal,
    RecurringSummaryResponse,
    SavingsGoalProgress,
    SavingsProgressResponse,
    SpendingInsightsResponse,
    UpcomingCharge,
    UserSettings,
    WeekdayTotal,
)
from .recurrence import add_months

ZERO = Decimal("0")
CENT = Decimal("0.01")
WARNING_THRESHOLD = 70.0
DANGER_THRESHOLD = 90.0
TOP_CATEGORY_LIMIT = 5
TREND_MONTHS = 6

# occurrences per year, used for the yearly projection
_YEARLY_FACTOR = {"weekly": 52, "monthly": 12, "yearly": 1}

_SAVINGS_GOALS = (
    ("Regular Savings", "regularSavingsGoal", "regularSavingsCurrent"),
    ("Emergency Fund", "emergencyGoal", "emergencyCurrent"),
    ("Investments", "investmentGoal", "investmentCurrent"),
)


def _total(rows: Iterable[dict[str, Any]]) -> Decimal:
    return sum((Decimal(r["amount"]) for r in rows), ZERO)


def _percent(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return round(float(part / whole * 100), 2)


def _in_month(row: dict[str, Any], month_start: date) -> bool:
    d = row["date"]
    return d.year == month_start.year and d.month == month_start.month


def _month_start(today: date) -> date:
    return today.replace(day=1)


def _category_totals(expenses: Iterable[dict[str, Any]]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for row in expenses:
        totals[row["category"]] += Decimal(row["amount"])
    return totals


def month_total(expenses: Iterable[dict[str, Any]], today: date) -> Decimal:
    start = _month_start(today)
    return _total(r for r in expenses if _in_month(r, start))


def dashboard_stats(expenses: list[dict[str, Any]], today: date, currency: str | None = None) -> DashboardStatsResponse:
    week_ago = today - timedelta(days=7)
    totals = _category_totals(expenses)
    top = max(totals.items(), key=lambda kv: kv[1])[0] if totals else None
    return DashboardStatsResponse(
        thisMonth=month_total(expenses, today),
        last7Days=_total(r for r in expenses if week_ago <= r["date"] <= today),
        topCategory=top,
        currencySymbol=currency_symbol(currency),
    )


def budget_status(spent: Decimal, budget: Decimal) -> BudgetStatusResponse:
    """Compare this month's spending with the monthly budget.

    The percentage is capped at 100; ``remaining`` goes negative once the
    budget is exceeded. A zero budget reports ``unset``.
    """
    if budget <= 0:
        return BudgetStatusResponse(budget=ZERO, spent=spent, remaining=ZERO, percentage=0.0, status=BudgetStatus.unset)
    percentage = min(100.0, _percent(spent, budget))
    if percentage >= DANGER_THRESHOLD:
        status = BudgetStatus.danger
    elif percentage >= WARNING_THRESHOLD:
        status = BudgetStatus.warning
    else:
        status = BudgetStatus.good
    return BudgetStatusResponse(
        budget=budget,
        spent=spent,
        remaining=budget - spent,
        percentage=percentage,
        status=status,
    )


def spending_insights(expenses: list[dict[str, Any]], income: list[dict[str, Any]], today: date) -> SpendingInsightsResponse:
    this_start = _month_start(today)
    last_start = add_months(this_start, -1)
    this_total = _total(r for r in expenses if _in_month(r, this_start))
    last_total = _total(r for r in expenses if _in_month(r, last_start))
    difference = this_total - last_total

    total_expenses = _total(expenses)
    total_income = _total(income)
    top = sorted(_category_totals(expenses).items(), key=lambda kv: kv[1], reverse=True)[:TOP_CATEGORY_LIMIT]

    days_with_expenses = len({r["date"] for r in expenses})
    average_daily = (total_expenses / days_with_expenses).quantize(CENT, ROUND_HALF_UP) if days_with_expenses else ZERO

    by_weekday: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for row in expenses:
        by_weekday[row["date"].weekday()] += Decimal(row["amount"])

    top_day = calendar.day_name[max(by_weekday, key=by_weekday.__getitem__)] if by_weekday else None

    trend = []
    for offset in range(TREND_MONTHS - 1, -1, -1):
        start = add_months(this_start, -offset)
        trend.append(
            MonthTotal(
                month=start.strftime("%Y-%m"),
                label=calendar.month_abbr[start.month],
                amount=_total(r for r in expenses if _in_month(r, start)),
            )
        )

    return SpendingInsightsResponse(
        thisMonthTotal=this_total,
        lastMonthTotal=last_total,
        monthDifference=difference,
        monthPercentChange=_percent(difference, last_total),
        topCategories=[
            CategoryShare(category=name, amount=amount, percentage=_percent(amount, total_expenses))
            for name, amount in top
        ],
        totalIncome=total_income,
        totalExpenses=total_expenses,
        netBalance=total_income - total_expenses,
        savingsRate=_percent(total_income - total_expenses, total_income),
        averageDailySpending=average_daily,
        byDayOfWeek=[WeekdayTotal(day=calendar.day_name[i], amount=by_weekday[i]) for i in range(7)],
        topSpendingDay=top_day,
        lastSixMonths=trend,
    )


def savings_progress(user_settings: UserSettings) -> SavingsProgressResponse:
    goals = []
    for name, goal_field, current_field in _SAVINGS_GOALS:
        goal = getattr(user_settings, goal_field)
        current = getattr(user_settings, current_field)
        goals.append(
            SavingsGoalProgress(
                name=name,
                goal=goal,
                current=current,
                remaining=max(goal - current, ZERO),
                percentage=min(100.0, _percent(current, goal)),
            )
        )
    total_goal = sum((g.goal for g in goals), ZERO)
    total_saved = sum((g.current for g in goals), ZERO)
    return SavingsProgressResponse(
        goals=goals,
        totalGoal=total_goal,
        totalSaved=total_saved,
        overallPercentage=_percent(total_saved, total_goal),
    )


def recurring_summary(charges: list[dict[str, Any]], today: date) -> RecurringSummaryResponse:
    active = [c for c in charges if c["is_active"]]
    monthly = [c for c in active if c["frequency"] == "monthly"]
    yearly_projection = sum(
        (Decimal(c["amount"]) * _YEARLY_FACTOR.get(c["frequency"], 0) for c in active),
        ZERO,
    )
    month_end = today.replace(day=calendar.monthrange(today.year, today.month)[1])
    upcoming = [c for c in active if today <= c["next_due_date"] <= month_end]
    return RecurringSummaryResponse(
        monthlyTotal=_total(monthly),
        monthlyCount=len(monthly),
        yearlyProjection=yearly_projection,
        activeCount=len(active),
        pausedCount=len(charges) - len(active),
        dueThisMonthCount=len(upcoming),
        dueThisMonthTotal=_total(upcoming),
        dueThisMonth=[
            UpcomingCharge(
                id=c["id"],
                description=c["description"] or c["category"],
                amount=c["amount"],
                nextDueDate=c["next_due_date"],
                daysUntil=(c["next_due_date"] - today).days,
            )
            for c in upcoming
        ],
    )
