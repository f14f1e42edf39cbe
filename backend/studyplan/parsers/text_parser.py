from __future__ import annotations

from pathlib import Path

from studyplan.parsers.base import ParseResult, ParsedPage


TEXT_FILE_EXTENSIONS = {
    ".md",
    ".txt",
    ".json",
    ".js",
    ".py",
    ".java",
    ".c",
    ".cpp",
}


class TextDocumentParser:
    parser_id = "text"

    def supports(self, *, file_name: str) -> bool:
        return Path(file_name).suffix.lower() in TEXT_FILE_EXTENSIONS

    def parse(self, *, content: bytes, file_name: str) -> ParseResult:
        del file_name
        text: str | None = None
        for encoding in ("utf-8", "latin-1"):
            try:
                text = content.decode(encoding)
                break
            except UnicodeDecodeError:
                continue

        if text is None:
            return ParseResult(
                parser_id=self.parser_id,
                pages=[],
                error="text decode failed using utf-8 and latin-1",
            )

        # Source files keep their exact text; only a BOM is dropped.
        return ParseResult(
            parser_id=self.parser_id,
            pages=[ParsedPage(page=1, text=text.lstrip("\ufeff"))],
        )
