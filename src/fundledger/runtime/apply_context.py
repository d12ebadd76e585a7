from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from fundledger.runtime.token_transfer import TokenTransferService, Transfer


@dataclass
class ApplyContext:
    """Per-tx environment handed to domain appliers.

    height is sampled once per tx so every check inside one apply sees the
    same block height. Appliers never move value themselves: `transfer`
    checks a movement against the service and stages it, and the executor
    settles `staged` together with the ledger commit.
    """

    height: int
    transfers: TokenTransferService
    custody_account: str
    staged: List[Transfer] = field(default_factory=list)

    def transfer(self, *, token: str, amount: int, sender: str, recipient: str) -> Transfer:
        t = Transfer(token=token, amount=amount, sender=sender, recipient=recipient)
        self.transfers.check(t, self.staged)
        self.staged.append(t)
        return t
