"""Tests for the daily append-only file sink."""

import asyncio
from datetime import datetime, timezone

import pytest

from exchange.errors import PersistenceError
from storage.file_sink import DailyFileSink

NOW = datetime(2025, 3, 4, 22, 30, tzinfo=timezone.utc).timestamp()


@pytest.fixture
def sink(tmp_path) -> DailyFileSink:
    return DailyFileSink(str(tmp_path / "data"), "SiH5", clock=lambda: NOW)


def test_file_name_uses_symbol_and_utc_date(sink: DailyFileSink) -> None:
    assert sink.file_path_for(NOW).name == "SiH5_data_2025-03-04.json"


def test_ensure_directory_creates_it(sink: DailyFileSink) -> None:
    assert not sink.data_dir.exists()
    sink.ensure_directory()
    assert sink.data_dir.is_dir()
    sink.ensure_directory()


@pytest.mark.asyncio
async def test_appends_one_record_per_line_in_order(sink: DailyFileSink) -> None:
    path = await sink.append(['{"data":1}', '{"data":2}'])
    await sink.append(['{"data":3}'])

    assert path.read_text(encoding="utf-8") == '{"data":1}\n{"data":2}\n{"data":3}\n'


@pytest.mark.asyncio
async def test_concurrent_appends_do_not_interleave(sink: DailyFileSink) -> None:
    first = [f'{{"a":{i}}}' for i in range(2000)]
    second = [f'{{"b":{i}}}' for i in range(2000)]

    await asyncio.gather(sink.append(first), sink.append(second))

    lines = sink.file_path_for(NOW).read_text(encoding="utf-8").splitlines()
    assert lines in (first + second, second + first)


@pytest.mark.asyncio
async def test_unwritable_directory_is_persistence_error(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    sink = DailyFileSink(str(blocker), "SiH5", clock=lambda: NOW)

    with pytest.raises(PersistenceError):
        await sink.append(['{"data":1}'])
