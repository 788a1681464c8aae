import json

import pytest

from browserbase_mcp.exceptions import SnapshotReferenceError
from browserbase_mcp.page_snapshot import PageSnapshot, parse_reference

from conftest import FakeFrame, FakePage


ROOT_WITH_IFRAME = '- heading "Main" [ref=e1]\n- iframe [ref=e2]'
CHILD_TREE = '- button "Inner" [ref=e1]'


def page_with_iframe():
    child = FakeFrame(CHILD_TREE)
    return FakePage(ROOT_WITH_IFRAME, children={"e2": child}), child


def test_parse_reference():
    assert parse_reference("e3") == (0, "e3")
    assert parse_reference("f2e7") == (2, "e7")
    assert parse_reference("f12e1") == (12, "e1")
    assert parse_reference("foo") == (0, "foo")


async def test_capture_root_frame():
    page = FakePage('- button "OK" [ref=e1]')
    snapshot = await PageSnapshot.capture(page)

    assert snapshot.text.startswith("- Page Snapshot\n```yaml\n")
    assert snapshot.text.endswith("```")
    assert "[ref=e1]" in snapshot.text
    assert snapshot.frame_count == 1
    assert not snapshot.disconnected
    assert snapshot.captured_at > 0


async def test_capture_prefixes_nested_frame_refs():
    page, child = page_with_iframe()
    snapshot = await PageSnapshot.capture(page)

    assert snapshot.frame_count == 2
    assert "ref=f1e1" in snapshot.text
    assert "ref=e1]" in snapshot.text  # root heading keeps its bare ref
    assert snapshot.frame_handles[1] is child


async def test_nested_reference_resolves_against_child_frame():
    page, child = page_with_iframe()
    snapshot = await PageSnapshot.capture(page)

    locator = snapshot.resolve_reference("f1e1")
    assert locator.frame is child
    assert locator.selector == "aria-ref=e1"

    root_locator = snapshot.resolve_reference("e1")
    assert root_locator.frame is page


async def test_broken_iframe_becomes_placeholder():
    page = FakePage(ROOT_WITH_IFRAME)  # no child registered for e2
    snapshot = await PageSnapshot.capture(page)

    assert "could not take iframe snapshot" in snapshot.text
    assert "frame e2 detached" in snapshot.text


async def test_root_failure_propagates():
    page = FakePage(error=RuntimeError("target closed"))
    with pytest.raises(RuntimeError, match="target closed"):
        await PageSnapshot.capture(page)


async def test_invalid_yaml_is_kept_as_text():
    page = FakePage("- a: [unclosed")
    snapshot = await PageSnapshot.capture(page)
    assert "[unclosed" in snapshot.text


async def test_page_text_is_kept_verbatim():
    aria = '- text: 3:45\n- text: 1_000\n- text: "yes"\n- button "Play" [ref=e1]'
    snapshot = await PageSnapshot.capture(FakePage(aria))

    assert snapshot.text == "- Page Snapshot\n```yaml\n" + aria + "\n```"


async def test_capture_requests_ref_annotations():
    page, child = page_with_iframe()
    await PageSnapshot.capture(page)

    assert page.snapshot_modes == ["ai"]
    assert child.snapshot_modes == ["ai"]


async def test_inlined_iframe_children_are_replaced_and_indented():
    aria = (
        "- main:\n"
        "  - iframe [ref=e2]:\n"
        '    - button "Stale" [ref=f9e1]\n'
        '  - link "After" [ref=e3]'
    )
    page = FakePage(aria, children={"e2": FakeFrame(CHILD_TREE)})
    snapshot = await PageSnapshot.capture(page)

    assert "Stale" not in snapshot.text
    assert '  - iframe [ref=e2]:\n    - button "Inner" [ref=f1e1]\n  - link "After" [ref=e3]' in snapshot.text


async def test_serialize_round_trip_is_disconnected():
    snapshot = await PageSnapshot.capture(FakePage())
    data = snapshot.serialize()

    assert json.loads(data) == {"text": snapshot.text}

    restored = PageSnapshot.deserialize(data, captured_at=123)
    assert restored.text == snapshot.text
    assert restored.disconnected
    assert restored.needs_reconnection()
    assert restored.captured_at == 123


def test_deserialize_malformed_returns_none():
    assert PageSnapshot.deserialize("not json") is None
    assert PageSnapshot.deserialize(json.dumps({"nope": 1})) is None
    assert PageSnapshot.deserialize(json.dumps(["text"])) is None


def test_disconnected_snapshot_refuses_resolution():
    restored = PageSnapshot.deserialize(json.dumps({"text": "- Page Snapshot"}))
    with pytest.raises(SnapshotReferenceError, match="disconnected"):
        restored.resolve_reference("e1")


def test_reconnect_restores_root_frame_only():
    page = FakePage()
    restored = PageSnapshot.deserialize(json.dumps({"text": "- Page Snapshot"}))
    restored.reconnect(page)

    assert not restored.disconnected
    assert restored.frame_count == 1
    assert restored.resolve_reference("e3").frame is page

    with pytest.raises(SnapshotReferenceError) as exc_info:
        restored.resolve_reference("f1e2")
    message = str(exc_info.value)
    assert "out of bounds (found 1 frames)" in message
    assert "fresh snapshot" in message


async def test_out_of_range_frame_index():
    snapshot = await PageSnapshot.capture(FakePage())
    with pytest.raises(SnapshotReferenceError, match="Frame index 1"):
        snapshot.resolve_reference("f1e2")


def test_reference_edge_cases():
    snapshot = PageSnapshot(text="x", frame_handles=[FakePage(), FakeFrame()])
    with pytest.raises(SnapshotReferenceError):
        snapshot.resolve_reference("")
    with pytest.raises(SnapshotReferenceError, match="no element"):
        snapshot.resolve_reference("f1")

    empty = PageSnapshot(text="x")
    with pytest.raises(SnapshotReferenceError, match="not initialized"):
        empty.resolve_reference("e1")
