"""Tool dispatch: tool contract, registry, fast path and executor.

Import from the submodules (``atlas.agent.executor``, ``atlas.agent.tool_base``).
"""
