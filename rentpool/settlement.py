"""
settlement.py - Loan payment settlement

Turns a priced loan into ledger moves:

    1. payer -> pool wallet        curve cost                    (payment asset P)
       or, when P is not the pool asset:
       payer -> converter          curve cost                    (P)
       converter -> pool wallet    convert(P, paid, pool asset)  (pool asset)
    2. pool wallet -> vault        converted * service_fee // cost
    3. payer -> pool wallet        gc fee                        (P, held for the loan closer)

What remains of the converted amount after the vault's cut is the pool's
earned interest; the caller queues it into the reserve stream.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List

from .core import Move
from .config import EnterpriseConfig
from .pricing_curve import LoanEstimate


@dataclass(frozen=True, slots=True)
class Settlement:
    """
    Result of settling a loan payment.

    Attributes:
        payment_asset: Asset the payer pays in
        paid: Curve cost (interest plus service fee), in the payment asset
        converted: `paid` translated into the pool asset
        service_fee: Vault's cut, in the pool asset
        pool_interest: Interest earned by the pool, in the pool asset
        gc_fee: Deposit held for the loan closer, in the payment asset
    """
    payment_asset: str
    paid: int
    converted: int
    service_fee: int
    pool_interest: int
    gc_fee: int


def calculate_settlement(estimate: LoanEstimate, payment_asset: str, config: EnterpriseConfig) -> Settlement:
    """Split a loan estimate into vault fee and pool interest."""
    paid = estimate.cost
    if paid == 0:
        converted = 0
    elif payment_asset == config.pool_asset:
        converted = paid
    else:
        converted = config.converter.convert(payment_asset, paid, config.pool_asset)
    service_fee = converted * estimate.service_fee // paid if paid else 0
    return Settlement(
        payment_asset=payment_asset,
        paid=paid,
        converted=converted,
        service_fee=service_fee,
        pool_interest=converted - service_fee,
        gc_fee=estimate.gc_fee,
    )


def settlement_moves(
    settlement: Settlement,
    payer: str,
    config: EnterpriseConfig,
    contract_id: str,
) -> List[Move]:
    """Ledger moves collecting a settlement from `payer`."""
    moves: List[Move] = []
    asset = settlement.payment_asset
    if settlement.paid > 0:
        if asset == config.pool_asset:
            moves.append(Move(settlement.paid, asset, payer, config.pool_wallet, contract_id))
        else:
            wallet = config.converter.wallet
            moves.append(Move(settlement.paid, asset, payer, wallet, contract_id))
            if settlement.converted > 0:
                moves.append(Move(settlement.converted, config.pool_asset, wallet, config.pool_wallet, contract_id))
    if settlement.service_fee > 0:
        moves.append(Move(settlement.service_fee, config.pool_asset, config.pool_wallet, config.vault, contract_id))
    if settlement.gc_fee > 0:
        moves.append(Move(settlement.gc_fee, asset, payer, config.pool_wallet, contract_id))
    return moves
