"""
SwapEngine CLI 入口

用法:
    swapengine serve                  # HTTP/WebSocket 服务 + Worker
    swapengine serve --no-worker      # 仅接收订单
    swapengine worker                 # 仅运行 Worker
    swapengine dead-letters           # 查看死信任务
    swapengine dead-letters --requeue <orderId>
"""

import argparse
import asyncio
import logging
import sys

from swapengine.core.config import Config, load_config


def setup_logging(config: Config, debug: bool = False):
    level = logging.DEBUG if debug else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.log_format)


async def cmd_serve(args, config: Config):
    """启动订单服务"""
    from swapengine.main import run_server

    if args.host:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port

    print(f"Order engine: http://{config.server.host}:{config.server.port}")
    print("Press Ctrl+C to stop")
    await run_server(config, with_worker=not args.no_worker)


async def cmd_worker(args, config: Config):
    """启动 Worker"""
    from swapengine.main import run_worker

    if args.concurrency is not None:
        config.worker.concurrency = args.concurrency

    print(f"Worker: concurrency={config.worker.concurrency}")
    print("Press Ctrl+C to stop")
    await run_worker(config)


async def cmd_dead_letters(args, config: Config) -> int:
    """查看 / 重新入队死信任务"""
    from swapengine.core.exceptions import QueueError
    from swapengine.jobs import create_job_queue

    # 进程内队列是空的, 只能查看 Redis
    config.queue.allow_memory_fallback = False
    try:
        queue = await create_job_queue(config.queue)
    except QueueError as e:
        print(f"Cannot reach job queue: {e}")
        return 1

    try:
        if args.requeue:
            if await queue.requeue_dead(args.requeue):
                print(f"Requeued {args.requeue}")
                return 0
            print(f"No dead-lettered job {args.requeue}")
            return 1

        jobs = await queue.dead_letters()
        if not jobs:
            print("No dead-lettered jobs")
            return 0

        print(f"{'ORDER ID':<38} {'ATTEMPTS':>8}  LAST ERROR")
        for job in jobs:
            print(f"{job.id:<38} {job.attempts_made:>8}  {job.last_error or ''}")
        return 0
    finally:
        await queue.close()


def main():
    parser = argparse.ArgumentParser(
        prog="swapengine",
        description="SwapEngine order execution engine CLI"
    )
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    parser.add_argument("-c", "--config", help="Config file (default config/default.yaml)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start HTTP/WebSocket server")
    serve_parser.add_argument("--host", help="Bind host")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Bind port (default 3000)")
    serve_parser.add_argument("--no-worker", action="store_true", help="Accept orders without processing them")

    # worker command
    worker_parser = subparsers.add_parser("worker", help="Run job workers only")
    worker_parser.add_argument("-n", "--concurrency", type=int, default=None)

    # dead-letters command
    dead_parser = subparsers.add_parser("dead-letters", help="List dead-lettered jobs")
    dead_parser.add_argument("--requeue", metavar="ORDER_ID", help="Move a dead-lettered job back to the queue")

    args = parser.parse_args()
    config = load_config(args.config)
    setup_logging(config, args.debug)

    try:
        if args.command == "serve":
            asyncio.run(cmd_serve(args, config))
        elif args.command == "worker":
            asyncio.run(cmd_worker(args, config))
        elif args.command == "dead-letters":
            sys.exit(asyncio.run(cmd_dead_letters(args, config)))
        else:
            parser.print_help()
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
