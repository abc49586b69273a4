"""
Randomized ledger conservation scenario.

Runs a seeded mix of deposits, withdrawals, purchases, transfers, pool
funding and cycles, reconciling after every step. Rejected operations
must leave the ledger exactly as it was.
"""

import random
from decimal import Decimal

import pytest

from atlas.config.levels import level_value
from atlas.services.funds.ledger import SystemFundsLedger
from atlas.services.transfer.transfer_service import TransferService
from atlas.utils.exceptions import MatrixError

PIN = "1234"


@pytest.mark.slow
@pytest.mark.asyncio
@pytest.mark.parametrize("seed", [7, 2026])
async def test_random_operations_conserve_value(
    seed, make_user, matrix_engine, session_maker, clock, reconcile
):
    rng = random.Random(seed)
    referrer = await make_user(balance=Decimal("50"), pin=PIN)
    users = [referrer] + [
        await make_user(
            balance=Decimal(rng.choice([20, 80, 200, 640])),
            referrer_id=referrer.id if rng.random() < 0.5 else None,
            pin=PIN,
        )
        for _ in range(11)
    ]
    ids = [u.id for u in users]
    accepted = rejected = 0

    for _ in range(120):
        operation = rng.choice(
            ["purchase", "purchase", "purchase", "deposit", "withdraw", "transfer", "pool", "cycles"]
        )
        try:
            if operation == "purchase":
                await matrix_engine.purchase_quota(rng.choice(ids), rng.choice([1, 1, 2, 3]))
            elif operation == "deposit":
                await matrix_engine.credit_deposit(
                    rng.choice(ids), level_value(rng.choice([1, 2, 3]))
                )
            elif operation == "withdraw":
                async with session_maker() as session:
                    await SystemFundsLedger(session).debit_withdrawal(
                        rng.choice(ids), Decimal(rng.choice([5, 15, 50]))
                    )
                    await session.commit()
            elif operation == "transfer":
                sender, recipient = rng.sample(ids, 2)
                async with session_maker() as session:
                    await TransferService(session, clock).transfer(
                        sender, recipient, Decimal(rng.choice([10, 25])), PIN
                    )
            elif operation == "pool":
                await matrix_engine.fund_pool(Decimal(rng.choice([20, 100])))
            else:
                await matrix_engine.run_scheduled_cycles(max_cycles=5)
            accepted += 1
        except MatrixError:
            rejected += 1

        clock.advance(minutes=rng.randint(1, 240))
        if rng.random() < 0.2:
            await matrix_engine.update_all_queue_scores()

        report = await reconcile()
        assert report.balanced, f"{operation}: {report.issues}"

    assert accepted > 0
    assert rejected + accepted == 120
