from __future__ import annotations

import asyncio
import logging
from io import BytesIO
from typing import Any, Dict, List, Mapping, Optional, Protocol

from pypdf import PasswordType, PdfReader, PdfWriter

from .errors import ParseError

logger = logging.getLogger(__name__)

PAGE_BREAK = "----------------Page ({index}) Break----------------"

# AcroForm /FT values -> field type names used in the fields output.
FIELD_TYPES = {
    "/Tx": "alpha",
    "/Btn": "box",
    "/Ch": "list",
    "/Sig": "signature",
}
RADIO_FLAG = 1 << 15


class ParseEventSink(Protocol):
    def on_parse_data(self, payload: Optional[Mapping[str, Any]]) -> None:
        ...

    def on_parse_error(self, detail: Any) -> None:
        ...


def format_raw_text(page_texts: List[str]) -> str:
    parts = []
    for index, text in enumerate(page_texts):
        parts.append(text)
        parts.append("\r\n" + PAGE_BREAK.format(index=index) + "\r\n")
    return "".join(parts)


def merge_text_blocks(texts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Merge consecutive text runs that sit on the same line (same ``y``) into one block.
    """
    merged: List[Dict[str, Any]] = []
    for text in texts:
        if merged and merged[-1]["y"] == text["y"]:
            prev = merged[-1]
            right = max(prev["x"] + prev["w"], text["x"] + text["w"])
            prev["text"] = f"{prev['text']} {text['text']}"
            prev["w"] = right - prev["x"]
            prev["h"] = max(prev["h"], text["h"])
            continue
        merged.append(dict(text))
    return merged


class ParsingEngine:
    """
    Parsing engine boundary. ``parse_data`` reports through the sink: one or
    more payload mappings, then ``None`` once all data was produced, or a
    single ``on_parse_error``. Accessors read the state of the last parse.
    """

    engine_version = "unknown"

    def __init__(self, need_raw_text: bool = False):
        self.need_raw_text = need_raw_text
        self.pages: List[Dict[str, Any]] = []
        self.page_texts: List[str] = []
        self.fields: List[Dict[str, Any]] = []

    async def parse_data(self, buffer: bytes, password: Optional[str], sink: ParseEventSink) -> None:
        raise NotImplementedError

    def reset(self) -> None:
        self.pages = []
        self.page_texts = []
        self.fields = []

    def get_raw_text_content(self) -> str:
        if not self.need_raw_text:
            return ""
        return format_raw_text(self.page_texts)

    def get_all_fields_types(self) -> List[Dict[str, Any]]:
        return [dict(f) for f in self.fields]

    def get_merged_text_blocks_if_needed(self) -> Dict[str, Any]:
        return {"Pages": [{"Texts": merge_text_blocks(page.get("Texts", []))} for page in self.pages]}

    def destroy(self) -> None:
        self.reset()


class DummyParsingEngine(ParsingEngine):
    """
    Treats the buffer as UTF-8 text: form feeds separate pages, every word is a
    text run positioned by line and column. Lines of the form ``[[name]]`` or
    ``[[name:type]]`` declare form fields. Used for local runs and tests.
    """

    engine_version = "dummy"

    async def parse_data(self, buffer: bytes, password: Optional[str], sink: ParseEventSink) -> None:
        self.reset()
        await asyncio.sleep(0)
        if not buffer:
            sink.on_parse_error(ParseError("empty document"))
            return
        text = buffer.decode("utf-8", errors="replace")
        for page_text in text.split("\f"):
            self.pages.append(self._map_page(page_text))
            self.page_texts.append(page_text.strip("\n"))
        sink.on_parse_data({"Transcoder": self.engine_version, "Meta": {"PageCount": len(self.pages)}})
        sink.on_parse_data({"Pages": self.pages})
        sink.on_parse_data(None)

    def _map_page(self, page_text: str) -> Dict[str, Any]:
        texts = []
        for line_no, line in enumerate(page_text.splitlines()):
            stripped = line.strip()
            if stripped.startswith("[[") and stripped.endswith("]]"):
                name, _, field_type = stripped[2:-2].partition(":")
                self.fields.append({"id": name.strip(), "type": field_type.strip() or "alpha"})
                continue
            column = 0
            for word in line.split(" "):
                if word:
                    texts.append({"x": column, "y": line_no, "w": len(word), "h": 1, "text": word})
                column += len(word) + 1
        return {"Width": max((t["x"] + t["w"] for t in texts), default=0), "Height": len(page_text.splitlines()), "Texts": texts}


class DoclingParsingEngine(ParsingEngine):
    """
    Docling-based engine. Conversion runs in a worker thread on an in-memory
    document stream; pypdf handles password decryption, document info and
    AcroForm field types.
    """

    def __init__(self, need_raw_text: bool = False, perform_ocr: bool = False, engine_version: str = "docling-latest"):
        super().__init__(need_raw_text=need_raw_text)
        try:
            from docling.datamodel.base_models import InputFormat
            from docling.datamodel.pipeline_options import PdfPipelineOptions
            from docling.document_converter import DocumentConverter, PdfFormatOption
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise RuntimeError("docling is required for DoclingParsingEngine. Please install 'docling'.") from exc

        self.engine_version = engine_version
        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_ocr = perform_ocr
        pipeline_options.do_table_structure = False
        self.converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            }
        )

    async def parse_data(self, buffer: bytes, password: Optional[str], sink: ParseEventSink) -> None:
        self.reset()
        try:
            reader = self._open_reader(buffer, password)
            if reader.is_encrypted:
                buffer = self._decrypted_bytes(reader)
            meta = self._read_meta(reader)
            self.fields = self._read_fields(reader)
            doc = await asyncio.to_thread(self._convert, buffer)
        except ParseError as exc:
            sink.on_parse_error(exc)
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("docling conversion failed")
            sink.on_parse_error(ParseError(f"parsing failed: {exc}", detail=exc))
            return

        self.pages, self.page_texts = self._map_docling_document(doc)
        sink.on_parse_data({"Transcoder": self.engine_version, "Meta": meta})
        sink.on_parse_data({"Pages": self.pages})
        sink.on_parse_data(None)

    def _open_reader(self, buffer: bytes, password: Optional[str]) -> PdfReader:
        reader = PdfReader(BytesIO(buffer))
        if reader.is_encrypted and reader.decrypt(password or "") == PasswordType.NOT_DECRYPTED:
            raise ParseError("incorrect password for encrypted PDF")
        return reader

    def _decrypted_bytes(self, reader: PdfReader) -> bytes:
        writer = PdfWriter(clone_from=reader)
        out = BytesIO()
        writer.write(out)
        return out.getvalue()

    def _read_meta(self, reader: PdfReader) -> Dict[str, Any]:
        info = reader.metadata or {}
        meta = {str(k).lstrip("/"): str(v) for k, v in info.items()}
        meta["PageCount"] = len(reader.pages)
        return meta

    def _read_fields(self, reader: PdfReader) -> List[Dict[str, Any]]:
        fields = reader.get_fields() or {}
        types = []
        for name, field in fields.items():
            ft = field.get("/FT")
            field_type = FIELD_TYPES.get(ft, "unknown")
            if ft == "/Btn" and int(field.get("/Ff", 0)) & RADIO_FLAG:
                field_type = "radio"
            types.append({"id": name, "type": field_type})
        return types

    def _convert(self, buffer: bytes):
        from docling.datamodel.base_models import DocumentStream

        result = self.converter.convert(DocumentStream(name="document.pdf", stream=BytesIO(buffer)))
        return result.document

    def _map_docling_document(self, doc):
        pages: Dict[int, Dict[str, Any]] = {}
        page_heights: Dict[int, Optional[float]] = {}
        for page_no, page in doc.pages.items():  # 1-based keys
            size = page.size
            width = getattr(size, "width", 0)
            height = getattr(size, "height", 0)
            page_heights[page_no] = height
            pages[page_no] = {"Width": width, "Height": height, "Texts": []}

        lines: Dict[int, List[str]] = {page_no: [] for page_no in pages}
        for item, _level in doc.iterate_items():
            text = getattr(item, "text", None)
            prov = item.prov[0] if getattr(item, "prov", []) else None
            if not text or not prov or prov.page_no not in pages or prov.bbox is None:
                continue
            bbox = prov.bbox
            if page_heights.get(prov.page_no) and bbox.coord_origin.name == "BOTTOMLEFT":
                bbox = bbox.to_top_left_origin(page_height=page_heights[prov.page_no])
            pages[prov.page_no]["Texts"].append(
                {
                    "x": bbox.l,
                    "y": bbox.t,
                    "w": bbox.width,
                    "h": bbox.height,
                    "text": text,
                    "label": str(getattr(item, "label", "text")),
                }
            )
            lines[prov.page_no].append(text)

        ordered = sorted(pages)
        return [pages[n] for n in ordered], ["\r\n".join(lines[n]) for n in ordered]

    def destroy(self) -> None:
        super().destroy()
        self.converter = None
