import asyncio
import logging
import os

import pytest

from helpers import CountingReader, RecordingContext, ScriptedEngine, done_engine
from pdf_parser.parsing import (
    FileAccessError,
    OutcomeKind,
    ParseError,
    ParserDestroyedError,
    ParserServices,
    PDFParser,
    SessionState,
    make_cache_key,
)


async def _load(parser, path, **kwargs):
    return await parser.load(path, **kwargs)


async def _parse_buffer(parser, data):
    return await parser.parse_buffer(data)


def _write_pdf(path, content=b"%PDF-1.4 test"):
    path.write_bytes(content)
    return path


def test_ids_are_unique_and_increasing():
    services = ParserServices.create()
    parsers = [PDFParser(engine=done_engine(), services=services) for _ in range(5)]
    assert [p.id for p in parsers] == [0, 1, 2, 3, 4]
    assert parsers[2].name == "PDFParser_2"


def test_state_before_loading():
    parser = PDFParser(engine=done_engine(), services=ParserServices.create())
    assert parser.file_path is None
    assert parser.file_mtime is None
    assert parser.bin_buffer_key is None
    assert parser.data is None


def test_load_emits_data_ready(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    reader = CountingReader()
    engine = done_engine({"page1": {}})
    services = ParserServices.create()
    parser = PDFParser(engine=engine, services=services, reader=reader, password="secret")

    outcome = asyncio.run(_load(parser, pdf))

    assert outcome.kind == OutcomeKind.DATA_READY
    assert outcome.payload == {"formImage": {"page1": {}}}
    assert outcome.parser_id == parser.id
    assert parser.data == {"page1": {}}
    assert parser.session.state == SessionState.DONE
    assert reader.calls == [str(pdf)]
    assert engine.calls == [(b"%PDF-1.4 test", "secret")]
    assert parser.file_path == str(pdf)
    assert parser.bin_buffer_key == make_cache_key(str(pdf), os.stat(pdf).st_mtime_ns / 1_000_000)
    assert services.cache.get(parser.bin_buffer_key) == b"%PDF-1.4 test"


def test_cache_hit_skips_read(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    reader = CountingReader()
    services = ParserServices.create()
    first_engine = done_engine({"page1": {}})
    second_engine = done_engine({"page1": {}})
    first = PDFParser(engine=first_engine, services=services, reader=reader)
    second = PDFParser(engine=second_engine, services=services, reader=reader)

    asyncio.run(_load(first, pdf))
    outcome = asyncio.run(_load(second, pdf))

    assert outcome.ok
    assert len(reader.calls) == 1
    assert second_engine.calls[0][0] == first_engine.calls[0][0]


def test_reloading_with_same_parser_uses_cache(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    reader = CountingReader()
    engine = done_engine({"x": 1})
    parser = PDFParser(engine=engine, services=ParserServices.create(), reader=reader)

    async def scenario():
        first = await parser.load(pdf)
        second = await parser.load(pdf)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.ok and second.ok
    assert len(reader.calls) == 1
    assert len(engine.calls) == 2


def test_changed_mtime_creates_new_entry(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    reader = CountingReader()
    services = ParserServices.create()
    parser = PDFParser(engine=done_engine({"x": 1}), services=services, reader=reader)

    os.utime(pdf, ns=(1_000_000_000_000_000_000, 1_000_000_000_000_000_000))
    asyncio.run(_load(parser, pdf))
    first_key = parser.bin_buffer_key
    os.utime(pdf, ns=(1_000_000_005_000_000_000, 1_000_000_005_000_000_000))
    asyncio.run(_load(parser, pdf))

    assert parser.bin_buffer_key != first_key
    assert len(services.cache) == 2
    assert len(reader.calls) == 2


def test_cache_stays_bounded(tmp_path):
    services = ParserServices.create(max_cache_entries=3)
    reader = CountingReader()
    for i in range(6):
        pdf = _write_pdf(tmp_path / f"doc{i}.pdf", f"%PDF {i}".encode())
        parser = PDFParser(engine=done_engine({"i": i}), services=services, reader=reader)
        asyncio.run(_load(parser, pdf))
        assert len(services.cache) <= 3
        assert services.cache.has(parser.bin_buffer_key)
    assert len(reader.calls) == 6


def test_payloads_are_merged_last_key_wins():
    engine = done_engine({"a": 1}, {"b": 2}, {"a": 3})
    parser = PDFParser(engine=engine, services=ParserServices.create())
    outcome = asyncio.run(_parse_buffer(parser, b"%PDF"))
    assert outcome.form_image == {"a": 3, "b": 2}


def test_merge_is_shallow():
    engine = done_engine({"meta": {"a": 1}}, {"meta": {"b": 2}})
    parser = PDFParser(engine=engine, services=ParserServices.create())
    outcome = asyncio.run(_parse_buffer(parser, b"%PDF"))
    assert outcome.form_image == {"meta": {"b": 2}}


def test_exactly_one_terminal_outcome():
    events = [("data", {"a": 1}), ("data", None), ("error", "late"), ("data", None)]
    received = []
    parser = PDFParser(engine=ScriptedEngine(events), services=ParserServices.create(), on_outcome=received.append)

    async def scenario():
        outcome = await parser.parse_buffer(b"%PDF")
        for _ in range(10):
            await asyncio.sleep(0)
        return outcome

    outcome = asyncio.run(scenario())
    assert outcome.ok
    assert received == [outcome]


def test_engine_error_clears_result():
    received = []
    engine = ScriptedEngine([("data", {"a": 1}), ("error", "bad xref")])
    parser = PDFParser(engine=engine, services=ParserServices.create(), on_outcome=received.append)

    outcome = asyncio.run(_parse_buffer(parser, b"%PDF"))

    assert outcome.kind == OutcomeKind.DATA_ERROR
    assert outcome.payload == {"parserError": "bad xref"}
    assert outcome.parser_error == "bad xref"
    assert outcome.form_image is None
    assert parser.data is None
    assert parser.session.state == SessionState.FAILED
    assert received == [outcome]


def test_engine_exception_becomes_parse_error():
    engine = ScriptedEngine([("data", {"a": 1}), ("raise", ValueError("boom"))])
    parser = PDFParser(engine=engine, services=ParserServices.create())
    outcome = asyncio.run(_parse_buffer(parser, b"%PDF"))
    assert not outcome.ok
    assert isinstance(outcome.parser_error, ParseError)
    assert isinstance(outcome.parser_error.detail, ValueError)
    assert parser.data is None


def test_engine_without_end_marker_fails_session():
    parser = PDFParser(engine=ScriptedEngine([("data", {"a": 1})]), services=ParserServices.create())
    outcome = asyncio.run(_parse_buffer(parser, b"%PDF"))
    assert not outcome.ok
    assert isinstance(outcome.parser_error, ParseError)


def test_read_failure_emits_data_error(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    denied = PermissionError(13, "Permission denied", str(pdf))
    reader = CountingReader(error=denied)
    engine = done_engine({"x": 1})
    services = ParserServices.create()
    received = []
    parser = PDFParser(engine=engine, services=services, reader=reader, on_outcome=received.append)

    outcome = asyncio.run(_load(parser, pdf))

    assert received == [outcome]
    assert outcome.kind == OutcomeKind.DATA_ERROR
    assert outcome.payload == {"parserError": denied}
    assert outcome.parser_error is denied
    assert parser.data is None
    assert engine.calls == []
    assert len(services.cache) == 0


def test_missing_file_fails_synchronously(tmp_path):
    parser = PDFParser(engine=done_engine(), services=ParserServices.create())
    with pytest.raises(FileAccessError) as excinfo:
        parser.load(tmp_path / "missing.pdf")
    assert excinfo.value.path == str(tmp_path / "missing.pdf")


def test_parse_buffer_bypasses_cache():
    reader = CountingReader()
    services = ParserServices.create()
    parser = PDFParser(engine=done_engine({"p": 1}), services=services, reader=reader)
    outcome = asyncio.run(_parse_buffer(parser, b"%PDF"))
    assert outcome.ok
    assert len(services.cache) == 0
    assert reader.calls == []
    assert parser.file_path is None
    assert parser.bin_buffer_key is None


def test_accessors_delegate_to_engine():
    engine = done_engine({"p": 1})
    engine.need_raw_text = True
    engine.page_texts = ["hello"]
    engine.fields = [{"id": "name", "type": "alpha"}]
    engine.pages = [{"Texts": [{"x": 0, "y": 0, "w": 1, "h": 1, "text": "a"}]}]
    parser = PDFParser(engine=engine, services=ParserServices.create())

    assert parser.get_raw_text_content().startswith("hello\r\n")
    assert parser.get_all_fields_types() == [{"id": "name", "type": "alpha"}]
    merged = parser.get_merged_text_blocks_if_needed()
    assert list(merged) == ["formImage"]
    assert merged["formImage"]["Pages"][0]["Texts"][0]["text"] == "a"
    assert list(parser.get_all_fields_types_stream()) == [[{"id": "name", "type": "alpha"}]]
    assert list(parser.get_merged_text_blocks_stream()) == [merged]
    assert "".join(parser.get_raw_text_content_stream(chunk_size=2)) == parser.get_raw_text_content()


def test_destroy_releases_everything(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    context = RecordingContext()
    engine = done_engine({"x": 1})
    services = ParserServices.create()
    parser = PDFParser(context=context, engine=engine, services=services)
    asyncio.run(_load(parser, pdf))
    key = parser.bin_buffer_key

    parser.destroy()

    assert context.destroy_calls == 1
    assert engine.destroyed
    assert parser.file_path is None
    assert parser.file_mtime is None
    assert parser.data is None
    assert services.cache.has(key)
    with pytest.raises(ParserDestroyedError):
        parser.destroy()
    with pytest.raises(ParserDestroyedError):
        parser.get_raw_text_content()


def test_destroy_without_context():
    parser = PDFParser(engine=done_engine(), services=ParserServices.create())
    parser.destroy()


def test_destroy_cancels_pending_session():
    class BlockingEngine(ScriptedEngine):
        async def parse_data(self, buffer, password, sink):
            sink.on_parse_data({"partial": True})
            await asyncio.Event().wait()

    received = []
    parser = PDFParser(engine=BlockingEngine([]), services=ParserServices.create(), on_outcome=received.append)

    async def scenario():
        future = parser.parse_buffer(b"%PDF")
        await asyncio.sleep(0)
        assert parser.data == {"partial": True}
        parser.destroy()
        await asyncio.sleep(0)
        return future

    future = asyncio.run(scenario())
    assert future.cancelled()
    assert received == []


def test_load_sets_verbosity(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    root = logging.getLogger("pdf_parser")
    previous = root.level
    try:
        parser = PDFParser(engine=done_engine(), services=ParserServices.create())
        asyncio.run(_load(parser, pdf, verbosity=5))
        assert root.level == logging.INFO
        asyncio.run(_load(parser, pdf, verbosity=0))
        assert root.level == logging.ERROR
    finally:
        root.setLevel(previous)


def test_cache_key_for_whole_millisecond_mtime(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    os.utime(pdf, (1700000000, 1700000000))
    parser = PDFParser(engine=done_engine(), services=ParserServices.create())

    asyncio.run(_load(parser, pdf))

    assert parser.file_mtime == 1700000000000
    assert parser.bin_buffer_key == f"{pdf}1700000000000"


def test_cache_key_keeps_fractional_mtime(tmp_path):
    pdf = _write_pdf(tmp_path / "a.pdf")
    os.utime(pdf, ns=(1_700_000_000_123_500_000, 1_700_000_000_123_500_000))
    parser = PDFParser(engine=done_engine(), services=ParserServices.create())

    asyncio.run(_load(parser, pdf))

    assert parser.bin_buffer_key == f"{pdf}1700000000123.5"
