"""Atlas - desktop assistant command pipeline.

Free-form text goes in; an intent is classified, planned against a static
risk table, optionally confirmed, dispatched to a tool and recorded for undo.

Usage:
    from atlas.router.pipeline import build_assistant

    assistant = build_assistant()
    reply = await assistant.handle("open spotify")
    print(reply.text)
"""

__version__ = "0.4.0"
