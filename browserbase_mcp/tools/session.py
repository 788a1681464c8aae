"""
Session lifecycle tools: create and close Browserbase sessions.

Neither tool captures a snapshot; a freshly created session has nothing to
show yet and a closed one has nothing left to show.
"""

from __future__ import annotations

from typing import List

from ..session_manager import DEFAULT_SESSION_ID
from ..utils.logger import get_logger
from . import SESSION_CLOSE_TOOL, SESSION_CREATE_TOOL, Tool, ToolAction, ToolInput, text_output

logger = get_logger(__name__)


class SessionCreateInput(ToolInput):
    """Create a session, optionally under a caller-chosen id."""


class SessionCloseInput(ToolInput):
    """Close the current (or the given) session."""


async def handle_session_create(context, args: SessionCreateInput) -> ToolAction:
    async def action():
        registry = context.registry
        if args.session_id:
            session = await registry.resolve(args.session_id, context.config)
            if session is None:
                session = await registry.create(context.config, session_id=args.session_id)
        else:
            session = await registry.create(context.config)

        context.current_session_id = session.id
        logger.info(f"[Tool:session_create] OK | active session={session.id}")
        return text_output(f"Created and set active Browserbase session ID: {session.id}")

    return ToolAction(action=action, capture_snapshot=False)


async def handle_session_close(context, args: SessionCloseInput) -> ToolAction:
    async def action():
        session_id = context.current_session_id
        closed = await context.registry.close_session(session_id)
        context.clear_latest_snapshot()
        context.current_session_id = DEFAULT_SESSION_ID

        if closed:
            logger.info(f"[Tool:session_close] OK | closed={session_id}")
            return text_output(
                f"Browserbase session {session_id} closed. Active session reset to default."
            )
        logger.info(f"[Tool:session_close] No live session {session_id}")
        return text_output(
            f"No active session {session_id} to close. Active session reset to default."
        )

    return ToolAction(action=action, capture_snapshot=False)


def make_session_tools() -> List[Tool]:
    return [
        Tool(
            name=SESSION_CREATE_TOOL,
            description=(
                "Create a new cloud browser session using Browserbase and make it "
                "the active session. Pass sessionId to reuse or name a session."
            ),
            input_schema=SessionCreateInput,
            handler=handle_session_create,
        ),
        Tool(
            name=SESSION_CLOSE_TOOL,
            description=(
                "Close the active Browserbase session and reset the active "
                "session to the default one."
            ),
            input_schema=SessionCloseInput,
            handler=handle_session_close,
        ),
    ]
