"""Command line entry point for the order execution engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Dict, List

import uvicorn

from order_execution_engine.api import create_app
from order_execution_engine.config import Settings, load_settings
from order_execution_engine.engine import OrderExecutionEngine, generate_order_id
from order_execution_engine.execution import OrderRequest, OrderType
from order_execution_engine.monitoring import configure_logging
from order_execution_engine.streaming import QueueChannel


logger = logging.getLogger(__name__)


def run_server(settings: Settings, host: str, port: int) -> None:
    configure_logging(settings.log_level)
    settings.ensure_directories()
    app = create_app(settings)
    logger.info('Serving order execution API on http://%s:%s', host, port)
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


async def _follow(order_id: str, channel: QueueChannel) -> List[str]:
    async for message in channel.updates():
        line = f"[{order_id[:8]}] {message['status']}: {message.get('message', '')}"
        data = message.get('data') or {}
        if 'txHash' in data:
            line += f" tx={data['txHash'][:16]}... amountOut={data['amountOut']:.6f} venue={data['venue']}"
        elif 'venue' in data:
            line += f" venue={data['venue']} estimatedOutput={data['estimatedOutput']:.6f}"
        if message.get('error'):
            line += f" error={message['error']}"
        logger.info('%s', line)
    return channel.statuses


async def run_demo(settings: Settings, orders: int, amount: float, slippage: float) -> None:
    configure_logging(settings.log_level)
    settings.ensure_directories()
    engine = OrderExecutionEngine.from_settings(settings)
    await engine.start()

    followers: Dict[str, asyncio.Task[List[str]]] = {}
    try:
        for index in range(orders):
            order_id = generate_order_id()
            channel = QueueChannel()
            await engine.subscribe(order_id, channel)
            followers[order_id] = asyncio.create_task(_follow(order_id, channel))
            request = OrderRequest(
                user_id=f'demo-user-{index + 1}',
                order_type=OrderType.MARKET,
                token_in='SOL',
                token_out='USDC',
                amount_in=amount + index * 0.5,
                slippage=slippage,
            )
            await engine.submit(request, order_id=order_id)
            logger.info('Submitted order %d/%d: %s', index + 1, orders, order_id)

        results = await asyncio.gather(*followers.values())
    finally:
        await engine.stop()

    confirmed = sum(1 for statuses in results if statuses and statuses[-1] == 'confirmed')
    logger.info('Demo finished: %d/%d orders confirmed', confirmed, orders)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Order execution engine CLI')
    sub = parser.add_subparsers(dest='command', required=True)

    serve = sub.add_parser('serve', help='Run the HTTP and WebSocket API')
    serve.add_argument('--host', help='Bind address (defaults to HOST)')
    serve.add_argument('--port', type=int, help='Listen port (defaults to PORT)')

    demo = sub.add_parser('demo', help='Submit concurrent orders in-process and print their status streams')
    demo.add_argument('--orders', type=int, default=5)
    demo.add_argument('--amount', type=float, default=1.0, help='Amount of the first order; each next adds 0.5')
    demo.add_argument('--slippage', type=float, default=0.5)

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    settings = load_settings()
    if args.command == 'serve':
        run_server(settings, args.host or settings.host, args.port or settings.port)
    elif args.command == 'demo':
        asyncio.run(run_demo(settings, args.orders, args.amount, args.slippage))
    else:  # pragma: no cover
        raise ValueError(f'Unknown command {args.command}')


if __name__ == '__main__':
    main()
