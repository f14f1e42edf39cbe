from __future__ import annotations

from studyplan.parsers.base import DocumentParser, ParseResult
from studyplan.parsers.pdf_parser import PdfDocumentParser
from studyplan.parsers.text_parser import TextDocumentParser


class ParserRegistry:
    def __init__(self, parsers: list[DocumentParser] | None = None) -> None:
        self._parsers = parsers or [
            PdfDocumentParser(),
            TextDocumentParser(),
        ]

    def parse(self, *, content: bytes, file_name: str) -> ParseResult:
        for parser in self._parsers:
            if not parser.supports(file_name=file_name):
                continue
            return parser.parse(content=content, file_name=file_name)
        return ParseResult(
            parser_id="none",
            pages=[],
            error="No parser registered for this file type.",
        )
