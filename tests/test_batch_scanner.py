#!/usr/bin/env python3
"""
Batch scanner: group sizes, pauses between groups, error isolation, cancellation
"""
import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from task_extractor.core.batch_scanner import BatchCursor, BatchScanner


def _recording_sleep():
    pauses = []

    async def sleep(seconds):
        pauses.append(seconds)

    return sleep, pauses


def test_cursor_walks_forward_only():
    cursor = BatchCursor(("a", "b", "c"))
    assert cursor.next_group(2) == ["a", "b"]
    assert cursor.next_group(2) == ["c"]
    assert cursor.exhausted
    assert cursor.next_group(2) == []


def test_batch_size_must_be_positive():
    with pytest.raises(ValueError):
        BatchScanner(batch_size=0)


@pytest.mark.asyncio
async def test_twelve_files_make_three_groups_with_two_pauses():
    sleep, pauses = _recording_sleep()
    scanner = BatchScanner(batch_size=5, pause=0.1, sleep=sleep)
    files = [f"note-{i:02d}.md" for i in range(12)]
    processed = []

    async def process(path):
        processed.append(path)

    report = await scanner.scan(files, process)

    assert report.group_sizes == [5, 5, 2]
    assert pauses == [0.1, 0.1]
    assert processed == files
    assert report.total == 12
    assert report.succeeded == 12
    assert not scanner.running


@pytest.mark.asyncio
async def test_group_members_run_concurrently_and_groups_do_not_overlap():
    sleep, _ = _recording_sleep()
    scanner = BatchScanner(batch_size=5, pause=0.1, sleep=sleep)
    active = 0
    peaks = []

    async def process(path):
        nonlocal active
        active += 1
        peaks.append(active)
        await asyncio.sleep(0)
        active -= 1

    await scanner.scan([f"{i}.md" for i in range(7)], process)
    assert max(peaks) == 5


@pytest.mark.asyncio
async def test_failures_are_isolated():
    sleep, _ = _recording_sleep()
    errors = []
    scanner = BatchScanner(batch_size=5, pause=0.1, on_error=lambda p, e: errors.append(p), sleep=sleep)

    async def process(path):
        if path == "3.md":
            raise OSError("disk gone")

    report = await scanner.scan([f"{i}.md" for i in range(12)], process)
    assert report.succeeded == 11
    assert list(report.failed) == ["3.md"]
    assert "disk gone" in report.failed["3.md"]
    assert errors == ["3.md"]
    assert report.group_sizes == [5, 5, 2]


@pytest.mark.asyncio
async def test_empty_list_never_pauses():
    sleep, pauses = _recording_sleep()
    report = await BatchScanner(sleep=sleep).scan([], lambda p: asyncio.sleep(0))
    assert report.group_sizes == []
    assert pauses == []


@pytest.mark.asyncio
async def test_cancel_stops_before_next_group():
    sleep, pauses = _recording_sleep()
    scanner = BatchScanner(batch_size=5, pause=0.1, sleep=sleep)
    processed = []

    async def process(path):
        processed.append(path)
        scanner.cancel()

    report = await scanner.scan([f"{i}.md" for i in range(12)], process)
    assert report.cancelled
    assert report.group_sizes == [5]
    assert len(processed) == 5
    assert pauses == []


@pytest.mark.asyncio
async def test_cancel_during_pause_stops_scan():
    scanner = BatchScanner(batch_size=2, pause=0.1)

    async def sleep(seconds):
        scanner.cancel()

    scanner._sleep = sleep
    report = await scanner.scan(["a.md", "b.md", "c.md"], lambda p: asyncio.sleep(0))
    assert report.group_sizes == [2]
    assert report.cancelled
