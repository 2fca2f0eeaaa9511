import csv
import io
from decimal import Decimal
from typing import Iterable

from .models import StatsResponse, WithdrawalStatus


def export_csv(rows: Iterable[dict]) -> str:
    rows = list(rows)
    fieldnames: list[str] = []
    for row in rows:
        for key in row:
            if key not in fieldnames:
                fieldnames.append(key)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames, lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def ledger_stats(engine) -> StatsResponse:
    accounts = engine.list_accounts()
    withdrawals = engine.list_withdrawals()
    total = sum((a.balance for a in accounts), Decimal("0"))
    return StatsResponse(
        user_count=len(accounts),
        withdraw_count=len(withdrawals),
        pending_count=sum(1 for w in withdrawals if w.status == WithdrawalStatus.PENDING),
        balance_total=f"{total:.2f}",
    )
