from __future__ import annotations

from dataclasses import dataclass, field

from solders.keypair import Keypair
from solders.pubkey import Pubkey


@dataclass(frozen=True)
class FundingAccount:
    """Identidad firmante. Una cuenta pertenece a una sola sesión."""

    id: int
    name: str
    keypair: Keypair = field(repr=False, compare=False)
    is_reserve: bool = False

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())
