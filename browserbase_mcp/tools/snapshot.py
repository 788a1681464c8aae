"""
Snapshot-driven tools.

``browserbase_snapshot`` captures the accessibility tree of the active page.
The element tools (click, hover, type, select_option) address elements by the
``ref`` values that snapshot printed; a ref is resolved against the active
session's latest snapshot when the action runs, so a stale or disconnected
snapshot surfaces as a reported validation failure, never a crash.
"""

from __future__ import annotations

from typing import List

from pydantic import Field

from ..utils.logger import get_logger
from . import SNAPSHOT_TOOL, Tool, ToolAction, ToolInput, text_output

logger = get_logger(__name__)


# ============================================================================
# Input schemas
# ============================================================================

class SnapshotInput(ToolInput):
    pass


class ElementInput(ToolInput):
    element: str = Field(
        ...,
        description="Human-readable element description used to obtain permission to interact with the element",
    )
    ref: str = Field(..., min_length=1, description="Exact target element reference from the page snapshot")


class TypeInput(ElementInput):
    text: str = Field(..., description="Text to type into the element")
    submit: bool = Field(False, description="Whether to press Enter after typing")
    slowly: bool = Field(False, description="Type one character at a time")


class SelectOptionInput(ElementInput):
    values: List[str] = Field(..., min_length=1, description="Values to select in the dropdown")


# ============================================================================
# Handlers
# ============================================================================

def _locate(context, ref: str):
    return context.snapshot_or_die().resolve_reference(ref)


async def handle_snapshot(context, args: SnapshotInput) -> ToolAction:
    async def action():
        return None

    return ToolAction(action=action, capture_snapshot=True)


async def handle_click(context, args: ElementInput) -> ToolAction:
    async def action():
        logger.info(f"[Tool:click] ref={args.ref} element={args.element!r}")
        await _locate(context, args.ref).click()
        return text_output(f"Clicked {args.element}")

    return ToolAction(action=action, capture_snapshot=True)


async def handle_hover(context, args: ElementInput) -> ToolAction:
    async def action():
        await _locate(context, args.ref).hover()
        return text_output(f"Hovered over {args.element}")

    return ToolAction(action=action, capture_snapshot=True)


async def handle_type(context, args: TypeInput) -> ToolAction:
    async def action():
        logger.info(f"[Tool:type] ref={args.ref} text={args.text[:40]!r}")
        locator = _locate(context, args.ref)
        if args.slowly:
            await locator.press_sequentially(args.text)
        else:
            await locator.fill(args.text)
        if args.submit:
            await locator.press("Enter")
        return text_output(f"Typed {args.text!r} into {args.element}")

    return ToolAction(action=action, capture_snapshot=True)


async def handle_select_option(context, args: SelectOptionInput) -> ToolAction:
    async def action():
        await _locate(context, args.ref).select_option(args.values)
        return text_output(f"Selected {', '.join(args.values)} in {args.element}")

    return ToolAction(action=action, capture_snapshot=True)


def make_snapshot_tools() -> List[Tool]:
    return [
        Tool(
            name=SNAPSHOT_TOOL,
            description="Capture an accessibility snapshot of the current page. Use it to obtain element refs.",
            input_schema=SnapshotInput,
            handler=handle_snapshot,
        ),
        Tool(
            name="browserbase_click",
            description="Click an element on the page by its snapshot ref",
            input_schema=ElementInput,
            handler=handle_click,
        ),
        Tool(
            name="browserbase_hover",
            description="Hover over an element on the page by its snapshot ref",
            input_schema=ElementInput,
            handler=handle_hover,
        ),
        Tool(
            name="browserbase_type",
            description="Type text into an editable element by its snapshot ref",
            input_schema=TypeInput,
            handler=handle_type,
        ),
        Tool(
            name="browserbase_select_option",
            description="Select one or more options in a dropdown by its snapshot ref",
            input_schema=SelectOptionInput,
            handler=handle_select_option,
        ),
    ]
