"""Example showing how to start executions on Redis and run them in a worker.

Run ``python worker_example.py worker`` in one shell and
``python worker_example.py start`` in another. Both use the SQLite file set
in ``FLOWENGINE_DATABASE_URL`` (default ``sqlite://executions.db``).
"""

import asyncio
import os
import sys

from flowengine import ExecutionScheduler, FlowDispatcher, FlowWorker, HandlerRegistry
from flowengine import get_flow_store, get_repository
from flowengine.transports.redis import RedisTransport

FLOWS_PATH = os.path.join(os.path.dirname(__file__), "..", "tests", "fixtures", "flows")


async def main():
    os.environ.setdefault("FLOWENGINE_DATABASE_URL", "sqlite://executions.db")
    repository = get_repository()
    flows = get_flow_store(FLOWS_PATH)
    transport = RedisTransport()

    if sys.argv[1] == "worker":
        scheduler = ExecutionScheduler(flows, repository, HandlerRegistry.with_builtins())
        await FlowWorker(transport, scheduler).start()
    else:
        dispatcher = FlowDispatcher(flows, repository, transport=transport)
        execution_id = await dispatcher.start_execution("tag-articles", {"source": "rss", "items": [1]})
        print(f"Started execution {execution_id}")
        await transport.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
