"""Navigation tools. Each one captures a snapshot once the page settles."""

from __future__ import annotations

from typing import List

from pydantic import Field

from ..utils.logger import get_logger
from . import NAVIGATE_TOOL, Tool, ToolAction, ToolInput, require_page, text_output

logger = get_logger(__name__)


class NavigateInput(ToolInput):
    url: str = Field(..., min_length=1, description="The URL to navigate to")


class HistoryInput(ToolInput):
    pass


async def handle_navigate(context, args: NavigateInput) -> ToolAction:
    async def action():
        logger.info(f"[Tool:navigate] -> {args.url}")
        page = await require_page(context)
        await page.goto(args.url, wait_until="domcontentloaded")
        return text_output(f"Navigated to {args.url}")

    return ToolAction(action=action, capture_snapshot=True)


async def handle_navigate_back(context, args: HistoryInput) -> ToolAction:
    async def action():
        page = await require_page(context)
        await page.go_back()
        return text_output("Navigated back")

    return ToolAction(action=action, capture_snapshot=True)


async def handle_navigate_forward(context, args: HistoryInput) -> ToolAction:
    async def action():
        page = await require_page(context)
        await page.go_forward()
        return text_output("Navigated forward")

    return ToolAction(action=action, capture_snapshot=True)


def make_navigate_tools() -> List[Tool]:
    return [
        Tool(
            name=NAVIGATE_TOOL,
            description="Navigate to a URL",
            input_schema=NavigateInput,
            handler=handle_navigate,
        ),
        Tool(
            name="browserbase_navigate_back",
            description="Go back to the previous page",
            input_schema=HistoryInput,
            handler=handle_navigate_back,
        ),
        Tool(
            name="browserbase_navigate_forward",
            description="Go forward to the next page",
            input_schema=HistoryInput,
            handler=handle_navigate_forward,
        ),
    ]
