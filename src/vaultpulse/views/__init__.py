from vaultpulse.views.balance_chart import BalanceChartView, DataState

__all__ = ["BalanceChartView", "DataState"]
