"""Script to cancel every open order on the configured symbol."""
import asyncio
import os
import sys

from dotenv import load_dotenv

from ladderbot.config.config import ExchangeCredentials
from ladderbot.core.errors import CancelError
from ladderbot.execution.exchange_gateway import ExchangeGateway
from ladderbot.execution.side_quoter import SideQuoter, SideQuoterConfig

# Load environment - try local first, then VPS path
if os.path.exists('.env'):
    load_dotenv('.env')
else:
    load_dotenv('/opt/ladderbot/.env')


async def main():
    exchange = os.environ['EXCHANGE'].lower()
    symbol = os.environ['SYMBOL']

    creds = ExchangeCredentials.from_env(exchange)
    gateway = ExchangeGateway.create(
        exchange,
        creds.to_ccxt(),
        testnet=os.getenv('TESTNET', '').lower() in {'1', 'true', 'yes', 'y'},
    )
    try:
        orders = await gateway.get_open_orders(symbol)
        print(f"=== Open Orders ({exchange} {symbol}) ===")
        print(f"Total open orders: {len(orders)}")
        by_side = {}
        for o in orders:
            by_side[o.side.value] = by_side.get(o.side.value, 0) + 1
        for side, count in sorted(by_side.items()):
            print(f"  {side}: {count} orders")

        if not orders:
            return

        if len(sys.argv) > 1 and sys.argv[1] == '--yes':
            confirm = 'yes'
        else:
            confirm = input("\nCancel ALL orders? Type 'yes' to confirm: ")
        if confirm.lower() != 'yes':
            print("Cancelled. No orders were modified.")
            return

        print("\nCancelling all orders...")
        if gateway.supports_cancel_all:
            try:
                await gateway.cancel_all_orders(symbol)
                print(f"  Symbol-wide cancel sent for {symbol}")
            except CancelError as e:
                print(f"  Symbol-wide cancel failed ({e}), cancelling by id...")

        remaining = [o.id for o in await gateway.get_open_orders(symbol)]
        if remaining:
            quoter = SideQuoter(gateway, symbol, SideQuoterConfig(cancel_delay_ms=300))
            result = await quoter.cancel_all(remaining)
            print(f"  Cancelled {len(result.cancelled)}, already gone {len(result.already_gone)}, "
                  f"failed {len(result.failed)}")
            for order_id in result.failed:
                print(f"    Failed id={order_id}")

        print("\n=== Done ===")
    finally:
        await gateway.close()


if __name__ == '__main__':
    asyncio.run(main())
