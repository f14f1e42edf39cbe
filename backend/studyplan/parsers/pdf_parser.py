from __future__ import annotations

import io
from pathlib import Path

from pypdf import PdfReader

from studyplan.parsers.base import ParseResult, ParsedPage


class PdfDocumentParser:
    parser_id = "pdf"

    def supports(self, *, file_name: str) -> bool:
        return Path(file_name).suffix.lower() == ".pdf"

    def parse(self, *, content: bytes, file_name: str) -> ParseResult:
        del file_name
        try:
            reader = PdfReader(io.BytesIO(content), strict=False)
            pages: list[ParsedPage] = []
            for index, page in enumerate(reader.pages, start=1):
                extracted = (page.extract_text() or "").strip()
                if extracted:
                    pages.append(ParsedPage(page=index, text=extracted))
            return ParseResult(parser_id=self.parser_id, pages=pages)
        except Exception as exc:
            return ParseResult(
                parser_id=self.parser_id,
                pages=[],
                error=f"pdf parse failed: {exc}",
            )
