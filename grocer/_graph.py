"""
Graph resolution — thin layer over nodnod.

Nodes declare dependencies through __compose__ annotations; resolve()
builds (once per target) the agent that runs them, injects the given
values by runtime type, and returns the target node.

    @node
    class TotalNode:
        @classmethod
        def __compose__(cls, cart: CartNode) -> "TotalNode": ...

    total = await resolve(TotalNode, request)

Note: Modules defining nodes must NOT use 'from __future__ import annotations'.
nodnod reads __compose__ hints at runtime.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Any, cast

from nodnod import EventLoopAgent, Node, Scope, Value, scalar_node as node

# ═══════════════════════════════════════════════════════════════════════════════
# Agent Cache
# ═══════════════════════════════════════════════════════════════════════════════

_agents: dict[type[Any], EventLoopAgent] = {}


def agent_for(target: type[Any]) -> EventLoopAgent:
    """Build the agent for target once. Dependencies are discovered from it."""
    agent = _agents.get(target)
    if agent is None:
        agent = EventLoopAgent.build({cast(type[Node[Any, Any]], target)})
        _agents[target] = agent
    return agent


# ═══════════════════════════════════════════════════════════════════════════════
# resolve()
# ═══════════════════════════════════════════════════════════════════════════════


async def resolve[T](target: type[T], *inputs: object) -> T:
    """
    Resolve target with inputs injected under their runtime types.

    Raises KeyError if the graph finished without producing target.
    """
    agent = agent_for(target)
    scope = Scope(detail=f"resolve:{target.__name__}")
    async with scope:
        for value in inputs:
            scope.push(Value(type(value), value))
        run = cast(
            Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
            getattr(agent, "run"),
        )
        await run(scope, {})
        found = scope.get(target)
        if found is None:
            raise KeyError(f"{target.__name__} not resolved")
        return cast(T, found.value)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("node", "agent_for", "resolve")
