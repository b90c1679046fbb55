from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class RawTrxTransfer:
    tx_hash: str
    timestamp: int          # ms, chain time
    owner_address: str
    to_address: str
    contract_type: int
    amount_sun: int         # TRX amount in sun (raw)


@dataclass(frozen=True)
class RawTrc20Transfer:
    tx_hash: str
    timestamp: int
    from_address: str
    to_address: str
    contract_address: str
    quant_raw: int          # token amount in raw units (before decimals)


@dataclass(frozen=True)
class AccountDetail:
    address: str
    balance_trx: Decimal
    balance_usdt: Decimal
    tx_count: int


@dataclass(frozen=True)
class RiskLabel:
    address: str
    label: Optional[str]
    category: Optional[str]     # free-form, as stored upstream
