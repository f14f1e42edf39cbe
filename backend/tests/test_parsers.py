from __future__ import annotations

from studyplan.parsers import ParserRegistry, TEXT_FILE_EXTENSIONS
from studyplan.parsers.base import ParseResult, ParsedPage
from studyplan.parsers.text_parser import TextDocumentParser


def test_text_parser_covers_source_and_note_formats() -> None:
    parser = TextDocumentParser()

    for extension in (".md", ".txt", ".json", ".js", ".py", ".java", ".c", ".cpp"):
        assert extension in TEXT_FILE_EXTENSIONS
        assert parser.supports(file_name=f"sample{extension.upper()}")
    assert not parser.supports(file_name="slides.pptx")


def test_text_parser_keeps_source_text_verbatim() -> None:
    source = "def main():\n    return 0\n"

    result = TextDocumentParser().parse(content=source.encode("utf-8"), file_name="main.py")

    assert result.error is None
    assert result.text == source


def test_registry_reports_unsupported_file_types() -> None:
    result = ParserRegistry().parse(content=b"binary", file_name="archive.zip")

    assert result.parser_id == "none"
    assert result.pages == []
    assert result.error == "No parser registered for this file type."


def test_registry_uses_first_supporting_parser() -> None:
    class Uppercase:
        parser_id = "upper"

        def supports(self, *, file_name: str) -> bool:
            return file_name.endswith(".md")

        def parse(self, *, content: bytes, file_name: str) -> ParseResult:
            return ParseResult(parser_id=self.parser_id, pages=[ParsedPage(page=1, text=content.decode().upper())])

    registry = ParserRegistry([Uppercase(), TextDocumentParser()])

    assert registry.parse(content=b"notes", file_name="a.md").text == "NOTES"
    assert registry.parse(content=b"notes", file_name="a.txt").parser_id == "text"


def test_parse_result_joins_pages_with_blank_lines() -> None:
    result = ParseResult(parser_id="pdf", pages=[ParsedPage(page=1, text="one"), ParsedPage(page=2, text="two")])

    assert result.text == "one\n\ntwo"
