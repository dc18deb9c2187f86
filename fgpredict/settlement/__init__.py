"""Settlement and accuracy module."""

from fgpredict.settlement.service import (
    SettlementService,
    get_accuracy_report,
    run_settlement,
    settlement_result,
)

__all__ = [
    "SettlementService",
    "get_accuracy_report",
    "run_settlement",
    "settlement_result",
]
