"""Example: run a media-monitoring flow with custom handlers in one process."""

import asyncio

from flowengine import Edge, Flow, FlowDispatcher, HandlerRegistry, InMemoryFlowStore, Node
from flowengine.persistence import InMemoryExecutionRepository


def classify(context, config):
    text = context.get("article", {}).get("title", "").lower()
    return {"category": "politics" if "senate" in text else "other"}


async def notify(context, config):
    print(f"[{config.get('channel', 'email')}] {context['article']['title']} -> {context['category']}")
    return {"notified": True}


FLOW = Flow(
    id="monitor-feed",
    name="Classify every article in a feed",
    nodes=[
        Node(id="feed-updated", type="trigger"),
        Node(id="each-article", type="loop", config={"items_path": "feed.items", "alias": "article"}),
        Node(id="classify", type="classify"),
        Node(id="notify", type="notify", config={"channel": "slack"}),
        Node(id="summary", type="set", config={"fields": {"summary": "{{feed.items.length}} articles"}}),
    ],
    edges=[
        Edge(from_node_id="feed-updated", to_node_id="each-article"),
        Edge(from_node_id="each-article", to_node_id="classify"),
        Edge(from_node_id="classify", to_node_id="notify"),
        Edge(from_node_id="each-article", to_node_id="summary", condition_label="done"),
    ],
)


async def main():
    registry = HandlerRegistry.with_builtins()
    registry.register("classify", classify)
    registry.register("notify", notify)

    dispatcher = FlowDispatcher(InMemoryFlowStore([FLOW]), InMemoryExecutionRepository(), registry)
    execution = await dispatcher.run_execution(
        "monitor-feed",
        {"feed": {"items": [{"title": "Senate passes budget"}, {"title": "Local weather"}]}},
    )
    print(f"Execution {execution.id}: {execution.status.value} ({execution.context['summary']})")
    for child in await dispatcher.list_children(execution.id):
        print(f"  child {child.id}: {child.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
