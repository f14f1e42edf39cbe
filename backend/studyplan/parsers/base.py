from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class ParsedPage:
    page: int
    text: str


@dataclass(frozen=True)
class ParseResult:
    parser_id: str
    pages: list[ParsedPage]
    error: str | None = None

    @property
    def text(self) -> str:
        return "\n\n".join(page.text for page in self.pages)


class DocumentParser(Protocol):
    parser_id: str

    def supports(self, *, file_name: str) -> bool:
        ...

    def parse(self, *, content: bytes, file_name: str) -> ParseResult:
        ...
