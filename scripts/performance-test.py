#!/usr/bin/env python3
import sys
import os
import time
from datetime import date, datetime, timedelta
from decimal import Decimal

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from models import RechargeEvent, TicketEntry
from recharge_validator import RechargeValidator

ACCOUNTS = 2000
monday = date(2025, 10, 6)
base = datetime(2025, 10, 6, 8, 0)

# Generate test data: one recharge and two tickets per account; the second ticket finds it consumed
recharges = [RechargeEvent(
    platform='POPN1' if i % 2 else 'POPLUZ',
    account_id=f'{1000000000 + i}',
    recharge_id=f'ORD-{i}',
    occurred_at=base + timedelta(seconds=i),
    amount=Decimal('20.00'),
) for i in range(ACCOUNTS)]
tickets = [TicketEntry(
    platform=r.platform,
    account_id=r.account_id,
    ticket_number=f'T-{r.recharge_id}-{n}',
    registered_at=r.occurred_at + timedelta(hours=2 + n),
    requested_draw_date=monday,
) for r in recharges for n in range(2)]

# Performance test
start_time = time.time()
validator = RechargeValidator(batch_size=50)
outcome = validator.validate_all(tickets, recharges)
duration = time.time() - start_time

print(f'Validated {len(tickets):,} tickets against {len(recharges):,} recharges in {duration:.2f} seconds')
assert duration < 30, f'Performance test failed: {duration:.2f}s > 30s'
assert outcome.stats.valid == ACCOUNTS, f'Expected {ACCOUNTS} valid, got {outcome.stats.valid}'
assert outcome.stats.invalid == ACCOUNTS, f'Expected {ACCOUNTS} invalid, got {outcome.stats.invalid}'
print('Performance test passed')
