from decimal import Decimal
from typing import Optional

from config import get_settings

SUPPORTED_LOCALES = ("en", "es")

CATALOG: dict[str, dict[str, str]] = {
    "en": {
        "uncategorized": "Uncategorized",
        "alert.budget_over": "⚠️ {category} budget at {percentage}% ({spent} of {amount})",
        "alert.budget_near": "💛 You are approaching the {category} limit: {percentage}%",
        "alert.goal_overdue": '🚨 Goal "{title}" is past its deadline. Progress: {progress}%',
        "alert.goal_deadline": '⏰ Goal "{title}" is due in {days} days. Progress: {progress}%',
        "alert.goal_progress": '📈 Goal "{title}": {progress}% done, {days} days left',
        "alert.spending_spike": "📊 High {category} spending this week: {week} (average: {average})",
        "alert.first_goal": '🎉 Congratulations! You completed your first goal: "{title}"',
        "alert.100_transactions": "🏆 Milestone unlocked! You have logged {count} transactions",
        "alert.budget_master": "💪 Great job! All your budgets are under control this month",
        "alert.small_expenses": "💡 You have {count} small expenses in {category} ({total}). Would a subscription or a bulk purchase be cheaper?",
        "alert.create_budget": '🎯 Consider creating a budget for "{category}" to keep that spending in check',
        "metric.net_cash_flow": "Net Cash Flow",
        "metric.savings_rate": "Savings Rate",
        "metric.budget_compliance": "Budget Compliance",
        "metric.goal_progress": "Goal Progress",
        "metric.total_income": "Period Income",
        "metric.total_expenses": "Period Expenses",
        "chart.cash_flow": "Cash Flow Trend",
        "chart.expense_distribution": "Expenses by Category",
        "chart.budget_progress": "Budget Status",
        "chart.goals_progress": "Financial Goal Progress",
        "chart.income_vs_expenses": "Income vs Expenses by Month",
        "insight.top_category.title": "Top Spending Category",
        "insight.top_category.description": "Your biggest expense is {category} with {amount}",
        "insight.top_category.actionable": "Review your {category} spending for possible savings",
        "insight.top_weekday.title": "Spending by Weekday",
        "insight.top_weekday.description": "You spend the most on {weekday}s ({amount})",
        "insight.top_weekday.actionable": "Plan your {weekday} spending ahead of time",
        "insight.goals.title": "Goal Progress",
        "insight.goals.description": "Average goal progress: {progress}%",
        "insight.goals.actionable_low": "Consider increasing your goal contributions",
        "insight.goals.actionable_ok": "Good progress on your financial goals",
        "summary.positive": "Positive cash flow of {amount}. ",
        "summary.deficit": "Deficit of {amount} this period. ",
        "summary.savings_high": "Excellent savings rate. ",
        "summary.savings_mid": "Moderate savings rate. ",
        "summary.savings_low": "Consider improving your savings rate. ",
        "summary.attention": "{count} area(s) need immediate attention.",
        "summary.stable": "Financial situation is stable.",
        "period.weekly": "Week of {start}",
        "period.monthly": "{month} {year}",
        "period.quarterly": "Q{quarter} {year}",
        "period.yearly": "Year {year}",
        "report.monthly_summary": "Monthly Summary",
        "report.budget_analysis": "Budget Analysis",
        "report.goal_progress": "Goal Progress",
        "report.spending_analysis": "Spending Analysis",
        "report.executive_summary": "Executive Summary",
        "report.summary": "The period shows a {direction} cash flow of {net} with a savings rate of {rate}%.",
        "report.positive": "positive",
        "report.negative": "negative",
        "report.rec_savings": "Consider raising your savings rate to 20% of your income",
        "report.rec_budgets": "Review the budgets that exceeded their limits",
        "report.rec_goals": "Speed up the goals with low progress",
        "report.rec_none": "Keep up the current habits",
    },
    "es": {
        "uncategorized": "Sin categoría",
        "alert.budget_over": "⚠️ Presupuesto de {category} al {percentage}% ({spent} de {amount})",
        "alert.budget_near": "💛 Te acercas al límite de {category}: {percentage}%",
        "alert.goal_overdue": '🚨 Meta "{title}" venció. Progreso: {progress}%',
        "alert.goal_deadline": '⏰ Meta "{title}" vence en {days} días. Progreso: {progress}%',
        "alert.goal_progress": '📈 Meta "{title}": {progress}% completado, {days} días restantes',
        "alert.spending_spike": "📊 Gasto elevado en {category} esta semana: {week} (promedio: {average})",
        "alert.first_goal": '🎉 ¡Felicidades! Completaste tu primera meta: "{title}"',
        "alert.100_transactions": "🏆 ¡Milestone desbloqueado! Has registrado {count} transacciones",
        "alert.budget_master": "💪 ¡Excelente! Todos tus presupuestos están bajo control este mes",
        "alert.small_expenses": "💡 Tienes {count} gastos pequeños en {category} ({total}). ¿Considera suscripción o compra mayor?",
        "alert.create_budget": '🎯 Considera crear un presupuesto para "{category}" para mejor control de gastos',
        "metric.net_cash_flow": "Flujo de Caja Neto",
        "metric.savings_rate": "Tasa de Ahorro",
        "metric.budget_compliance": "Cumplimiento Presupuestario",
        "metric.goal_progress": "Progreso de Metas",
        "metric.total_income": "Ingresos del Período",
        "metric.total_expenses": "Gastos del Período",
        "chart.cash_flow": "Tendencia de Flujo de Caja",
        "chart.expense_distribution": "Distribución de Gastos por Categoría",
        "chart.budget_progress": "Estado de Presupuestos",
        "chart.goals_progress": "Progreso de Metas Financieras",
        "chart.income_vs_expenses": "Ingresos vs Gastos por Mes",
        "insight.top_category.title": "Mayor Categoría de Gasto",
        "insight.top_category.description": "Tu mayor gasto es en {category} con {amount}",
        "insight.top_category.actionable": "Considera revisar tus gastos en {category} para posibles ahorros",
        "insight.top_weekday.title": "Patrón Temporal de Gastos",
        "insight.top_weekday.description": "Gastas más los {weekday} ({amount})",
        "insight.top_weekday.actionable": "Planifica mejor tus gastos para los {weekday}",
        "insight.goals.title": "Progreso de Metas",
        "insight.goals.description": "Progreso promedio de metas: {progress}%",
        "insight.goals.actionable_low": "Considera aumentar las contribuciones a tus metas",
        "insight.goals.actionable_ok": "Buen progreso en tus metas financieras",
        "summary.positive": "Flujo de caja positivo de {amount}. ",
        "summary.deficit": "Déficit de {amount} este período. ",
        "summary.savings_high": "Excelente tasa de ahorro. ",
        "summary.savings_mid": "Tasa de ahorro moderada. ",
        "summary.savings_low": "Considera mejorar tu tasa de ahorro. ",
        "summary.attention": "{count} área(s) requieren atención inmediata.",
        "summary.stable": "Situación financiera estable.",
        "period.weekly": "Semana del {start}",
        "period.monthly": "{month} de {year}",
        "period.quarterly": "Q{quarter} {year}",
        "period.yearly": "Año {year}",
        "report.monthly_summary": "Resumen Mensual",
        "report.budget_analysis": "Análisis de Presupuestos",
        "report.goal_progress": "Progreso de Metas",
        "report.spending_analysis": "Análisis de Gastos",
        "report.executive_summary": "Resumen Ejecutivo",
        "report.summary": "El período muestra un flujo de caja {direction} de {net} con una tasa de ahorro del {rate}%.",
        "report.positive": "positivo",
        "report.negative": "negativo",
        "report.rec_savings": "Considera aumentar tu tasa de ahorro al 20% de tus ingresos",
        "report.rec_budgets": "Revisa los presupuestos que han excedido sus límites",
        "report.rec_goals": "Acelera el progreso en metas con bajo avance",
        "report.rec_none": "Mantén tus hábitos actuales",
    },
}

WEEKDAYS = {
    "en": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"],
    "es": ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"],
}

MONTHS = {
    "en": [
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ],
    "es": [
        "enero", "febrero", "marzo", "abril", "mayo", "junio",
        "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
    ],
}


def resolve_locale(locale: Optional[str] = None) -> str:
    value = (locale or get_settings().locale or "en").lower()
    return value if value in SUPPORTED_LOCALES else "en"


def t(key: str, locale: Optional[str] = None, **params: object) -> str:
    template = CATALOG[resolve_locale(locale)][key]
    return template.format(**params)


def format_money(amount: object, locale: Optional[str] = None) -> str:
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    text = f"{value:,.2f}"
    if resolve_locale(locale) == "es":
        text = text.replace(",", "_").replace(".", ",").replace("_", ".")
        return f"{text}€"
    return f"€{text}"


def weekday_name(index: int, locale: Optional[str] = None) -> str:
    return WEEKDAYS[resolve_locale(locale)][index]


def month_name(month: int, locale: Optional[str] = None) -> str:
    return MONTHS[resolve_locale(locale)][month - 1]
