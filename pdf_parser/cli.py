"""
Convert PDF files to JSON.

Usage:
    pdf-parser -f /path/to/file.pdf -o ./out
    pdf-parser -f /path/to/dir -o ./out -c -t -m
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pdf_parser.parsing import (
    DoclingParsingEngine,
    DummyParsingEngine,
    FileAccessError,
    ParserServices,
    PDFParser,
)
from pdf_parser.parsing.logging_utils import setup_logging

logger = logging.getLogger("pdf_parser.cli")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pdf-parser", description="Convert PDF files to JSON")
    parser.add_argument("-f", "--file", required=True, type=Path, help="PDF file or directory of PDF files")
    parser.add_argument("-o", "--output", default=None, type=Path, help="Output directory (defaults to the input's)")
    parser.add_argument("-c", "--content", action="store_true", help="Also write raw text to <name>.content.txt")
    parser.add_argument("-t", "--fields", action="store_true", help="Also write field types to <name>.fields.json")
    parser.add_argument("-m", "--merge", action="store_true", help="Also write merged text blocks to <name>.merged.json")
    parser.add_argument("-p", "--password", default=None, help="Password for encrypted PDFs")
    parser.add_argument("-v", "--verbosity", default=0, type=int, help="0 errors, 1 warnings, 5 infos")
    parser.add_argument("-e", "--engine", default="docling", choices=["docling", "dummy"], help="Parsing engine")
    parser.add_argument("--ocr", action="store_true", help="Enable OCR in the docling engine")
    return parser


def collect_inputs(source: Path) -> List[Path]:
    if source.is_dir():
        return sorted(p for p in source.iterdir() if p.suffix.lower() == ".pdf")
    return [source]


def make_engine(args: argparse.Namespace):
    if args.engine == "dummy":
        return DummyParsingEngine(need_raw_text=args.content)
    return DoclingParsingEngine(need_raw_text=args.content, perform_ocr=args.ocr)


def _write_json(path: Path, payload) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, default=str)


async def convert_file(pdf_path: Path, out_dir: Path, args: argparse.Namespace, services: ParserServices) -> bool:
    parser = PDFParser(password=args.password, engine=make_engine(args), services=services)
    try:
        outcome = await parser.load(pdf_path, verbosity=args.verbosity)
        if not outcome.ok:
            logger.error("Parse failed for %s: %s", pdf_path, outcome.parser_error)
            return False

        out_dir.mkdir(parents=True, exist_ok=True)
        _write_json(out_dir / f"{pdf_path.stem}.json", outcome.payload)
        if args.content:
            (out_dir / f"{pdf_path.stem}.content.txt").write_text(parser.get_raw_text_content(), encoding="utf-8")
        if args.fields:
            _write_json(out_dir / f"{pdf_path.stem}.fields.json", parser.get_all_fields_types())
        if args.merge:
            _write_json(out_dir / f"{pdf_path.stem}.merged.json", parser.get_merged_text_blocks_if_needed())
        logger.info("Converted %s", pdf_path)
        return True
    finally:
        parser.destroy()


async def convert_all(inputs: List[Path], args: argparse.Namespace) -> int:
    services = ParserServices.create()
    failures = 0
    for pdf_path in inputs:
        out_dir = args.output or pdf_path.parent
        try:
            ok = await convert_file(pdf_path, out_dir, args, services)
        except FileAccessError as exc:
            logger.error("%s", exc)
            ok = False
        failures += 0 if ok else 1
    return failures


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.verbosity)

    if not args.file.exists():
        logger.error("Input not found: %s", args.file)
        return 2
    inputs = collect_inputs(args.file)
    if not inputs:
        logger.error("No PDF files found in %s", args.file)
        return 2

    failures = asyncio.run(convert_all(inputs, args))
    print(f"Converted {len(inputs) - failures}/{len(inputs)} file(s)")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
