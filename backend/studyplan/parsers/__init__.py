from studyplan.parsers.base import ParseResult, ParsedPage
from studyplan.parsers.registry import ParserRegistry
from studyplan.parsers.text_parser import TEXT_FILE_EXTENSIONS

__all__ = ["ParseResult", "ParsedPage", "ParserRegistry", "TEXT_FILE_EXTENSIONS"]
