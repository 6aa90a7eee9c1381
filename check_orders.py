"""Check open orders and free balances on the configured symbol."""
import asyncio
import os

from dotenv import load_dotenv

from ladderbot.config.config import ExchangeCredentials
from ladderbot.core.types import Side
from ladderbot.execution.exchange_gateway import ExchangeGateway

load_dotenv()


async def main():
    exchange = os.environ['EXCHANGE'].lower()
    symbol = os.environ['SYMBOL']
    base, quote = symbol.split('/')[0], symbol.split('/')[1].split(':')[0]

    creds = ExchangeCredentials.from_env(exchange)
    gateway = ExchangeGateway.create(
        exchange,
        creds.to_ccxt(),
        testnet=os.getenv('TESTNET', '').lower() in {'1', 'true', 'yes', 'y'},
    )
    try:
        constraints = await gateway.get_market_constraints(symbol)
        px_dp, amt_dp = constraints.price_decimals, constraints.amount_decimals
        orders = await gateway.get_open_orders(symbol)
        print(f"Open orders on {exchange} {symbol}: {len(orders)}")
        for side in (Side.BID, Side.ASK):
            rows = sorted((o for o in orders if o.side is side), key=lambda o: o.price, reverse=side is Side.BID)
            if not rows:
                continue
            total = sum(o.price * o.amount for o in rows)
            print(f"\n  {side.value}: {len(rows)} orders, {total:.4f} {quote}")
            for o in rows:
                print(f"    {o.id}  {o.price:<14.{px_dp}f} x {o.amount:.{amt_dp}f}")

        print("\nFree balances:")
        for currency in (base, quote):
            free = await gateway.get_available_balance(currency)
            print(f"  {currency}: {free:g}")
    finally:
        await gateway.close()


if __name__ == '__main__':
    asyncio.run(main())
