"""Tool catalog, qualified names and the built-in/provider resolver.

Example:
    from parley.ai.orchestration.tools import ToolCatalog, ToolResolver, ToolSpec

    catalog = ToolCatalog()
    catalog.register_function(
        spec=ToolSpec(name="greet", description="Greet someone"),
        handler=lambda args: f"Hello, {args.get('name', 'World')}!",
    )
    resolver = ToolResolver(catalog, providers=registry)
    result = await resolver.dispatch("greet", {"name": "Alice"})
"""

from .types import (
    AsyncToolHandler,
    QualifiedName,
    SimpleTool,
    Tool,
    ToolHandler,
    ToolSource,
    ToolSpec,
)
from .registry import ToolCatalog, ToolRegistration
from .resolver import ProviderGateway, ToolResolver

__all__ = [
    # types.py
    "Tool",
    "ToolSpec",
    "ToolHandler",
    "AsyncToolHandler",
    "SimpleTool",
    "ToolSource",
    "QualifiedName",
    # registry.py
    "ToolCatalog",
    "ToolRegistration",
    # resolver.py
    "ProviderGateway",
    "ToolResolver",
]
