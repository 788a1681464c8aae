"""
Page-level tools that need no element ref: keyboard, waiting, text
extraction and screenshots.
"""

from __future__ import annotations

import base64
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from ..models.schemas import ToolActionOutput, ToolContent
from ..utils.logger import get_logger
from . import Tool, ToolAction, ToolInput, require_page, text_output

logger = get_logger(__name__)

MAX_TEXT_CHARS = 20000


class PressKeyInput(ToolInput):
    key: str = Field(..., min_length=1, description="Name of the key to press, e.g. 'Enter' or 'ArrowLeft'")


class WaitInput(ToolInput):
    time: float = Field(..., ge=0, description="Time to wait in seconds")


class GetTextInput(ToolInput):
    selector: Optional[str] = Field(None, description="CSS selector to read; the whole body when omitted")


class ScreenshotInput(ToolInput):
    name: Optional[str] = Field(None, description="Resource name for the screenshot")
    full_page: bool = Field(False, alias="fullPage", description="Capture the full scrollable page")
    format: Literal["png", "jpeg"] = Field("png", description="Image format")


# ============================================================================
# Handlers
# ============================================================================

async def handle_press_key(context, args: PressKeyInput) -> ToolAction:
    async def action():
        logger.info(f"[Tool:press_key] key={args.key!r}")
        page = await require_page(context)
        await page.keyboard.press(args.key)
        return text_output(f"Pressed key {args.key}")

    return ToolAction(action=action, capture_snapshot=True)


async def handle_wait(context, args: WaitInput) -> ToolAction:
    async def action():
        await context.wait_for_timeout(int(args.time * 1000))
        return text_output(f"Waited for {args.time} seconds")

    return ToolAction(action=action, capture_snapshot=True)


async def handle_get_text(context, args: GetTextInput) -> ToolAction:
    async def action():
        page = await require_page(context)
        selector = args.selector or "body"
        text = (await page.inner_text(selector)).strip()
        if len(text) > MAX_TEXT_CHARS:
            text = text[:MAX_TEXT_CHARS] + "\n[... truncated]"
        logger.info(f"[Tool:get_text] selector={selector!r} chars={len(text)}")
        return text_output(text)

    return ToolAction(action=action, capture_snapshot=False)


async def handle_take_screenshot(context, args: ScreenshotInput) -> ToolAction:
    async def action():
        page = await require_page(context)
        raw = await page.screenshot(full_page=args.full_page, type=args.format)
        data = base64.b64encode(raw).decode("ascii")

        name = args.name or f"screenshot-{datetime.now().strftime('%Y%m%dT%H%M%S%f')}"
        entry = context.add_resource(name, args.format, data)
        logger.info(f"[Tool:take_screenshot] OK | uri={entry.uri} bytes={len(raw)}")

        return ToolActionOutput(
            content=[
                ToolContent(type="text", text=f"Screenshot taken and saved as resource '{entry.uri}'."),
                ToolContent(type="image", data=data, mime_type=f"image/{args.format}"),
            ]
        )

    return ToolAction(action=action, capture_snapshot=False)


def make_common_tools() -> List[Tool]:
    return [
        Tool(
            name="browserbase_press_key",
            description="Press a key on the keyboard",
            input_schema=PressKeyInput,
            handler=handle_press_key,
        ),
        Tool(
            name="browserbase_wait",
            description="Wait for a given number of seconds",
            input_schema=WaitInput,
            handler=handle_wait,
        ),
        Tool(
            name="browserbase_get_text",
            description="Extract the visible text of the page or of one element",
            input_schema=GetTextInput,
            handler=handle_get_text,
        ),
        Tool(
            name="browserbase_take_screenshot",
            description="Take a screenshot of the current page and store it as a resource",
            input_schema=ScreenshotInput,
            handler=handle_take_screenshot,
        ),
    ]
