"""Ledger integrity audit.

Read-only check of persisted state against the ledger invariants:
- the ledger was constructed (total supply present)
- sum of balances equals total supply
- no balance or allowance is outside 0..2**128-1
- no explicit zero entries (maps are sparse)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .amounts import MAX_AMOUNT
from .state_store import StateStore


@dataclass
class IntegrityReport:
    total_supply: Optional[int]
    balance_sum: int
    holders: int
    allowances: int
    zero_entries: int
    issues: List[str] = field(default_factory=list)
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def conserved(self) -> bool:
        return self.total_supply is not None and self.balance_sum == self.total_supply

    @property
    def ok(self) -> bool:
        return self.conserved and not self.issues

    def to_markdown(self) -> str:
        lines: List[str] = []
        lines.append("# Ledger Integrity Report")
        lines.append("")
        lines.append(f"- Generated at: `{self.generated_at}`")
        lines.append("")
        lines.append("## Summary")
        supply = "n/a" if self.total_supply is None else str(self.total_supply)
        lines.append(f"- Total supply: **{supply}**")
        lines.append(f"- Sum of balances: **{self.balance_sum}**")
        lines.append(f"- Holders: **{self.holders}**")
        lines.append(f"- Allowances: **{self.allowances}**")
        lines.append(f"- Explicit zero entries: **{self.zero_entries}**")
        lines.append(f"- Conserved: **{'yes' if self.conserved else 'NO'}**")
        lines.append("")
        lines.append("## Detected Issues")
        if self.issues:
            lines.extend(f"- {issue}" for issue in self.issues)
        else:
            lines.append("- No integrity issues detected")
        lines.append("")
        return "\n".join(lines)


def audit_ledger(store: StateStore) -> IntegrityReport:
    total = store.get_total_supply()
    issues: List[str] = []
    balance_sum = 0
    holders = 0
    zero_entries = 0

    for account, amount in store.iter_balances():
        if amount == 0:
            zero_entries += 1
            continue
        if not (0 < amount <= MAX_AMOUNT):
            issues.append(f"balance out of range for `{account.hex()}`: {amount}")
        holders += 1
        balance_sum += amount

    allowance_count = 0
    for (owner, spender), amount in store.iter_allowances():
        if amount == 0:
            zero_entries += 1
            continue
        if not (0 < amount <= MAX_AMOUNT):
            issues.append(f"allowance out of range for `{owner.hex()}` -> `{spender.hex()}`: {amount}")
        allowance_count += 1

    if total is None:
        issues.append("ledger not constructed (no total supply)")
    elif balance_sum != total:
        issues.append(f"sum of balances {balance_sum} != total supply {total}")
    if zero_entries:
        issues.append(f"{zero_entries} explicit zero entries stored")

    return IntegrityReport(
        total_supply=total,
        balance_sum=balance_sum,
        holders=holders,
        allowances=allowance_count,
        zero_entries=zero_entries,
        issues=issues,
    )
