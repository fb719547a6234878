from __future__ import annotations

# v1 stream names (frozen semantics for v1). Stream name equals schema name.

LEDGER_TRANSFER_V1 = "ledger.transfer.v1"
LEDGER_APPROVAL_V1 = "ledger.approval.v1"

ALL_STREAMS_V1 = (LEDGER_TRANSFER_V1, LEDGER_APPROVAL_V1)
