from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Iterable, Iterator

from studyplan.config import Settings
from studyplan.parsers import ParserRegistry

logger = logging.getLogger("studyplan.corpus")


@dataclass(frozen=True)
class Document:
    """One collected source file; ``path`` is relative to the collection root."""

    path: str
    content: str


class CorpusCollector:
    def __init__(
        self,
        allowed_extensions: Iterable[str],
        registry: ParserRegistry | None = None,
    ) -> None:
        self._allowed_extensions = frozenset(ext.lower() for ext in allowed_extensions)
        self._registry = registry or ParserRegistry()

    @property
    def allowed_extensions(self) -> frozenset[str]:
        return self._allowed_extensions

    def collect(self, root: str | Path) -> list[Document]:
        root_path = Path(root)
        if not root_path.exists():
            logger.info("corpus_root_missing", extra={"event": "corpus_root_missing", "root": str(root_path)})
            return []

        if root_path.is_file():
            if not self._is_allowed(root_path):
                return []
            document = self._read_document(root_path, label=root_path.name)
            return [document] if document is not None else []

        documents: list[Document] = []
        for file_path in self._walk(root_path):
            label = file_path.relative_to(root_path).as_posix()
            document = self._read_document(file_path, label=label)
            if document is not None:
                documents.append(document)

        logger.info(
            "corpus_collected",
            extra={"event": "corpus_collected", "root": str(root_path), "document_count": len(documents)},
        )
        return documents

    def _walk(self, directory: Path) -> Iterator[Path]:
        try:
            entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
        except OSError as exc:
            logger.warning(
                "corpus_directory_unreadable",
                extra={"event": "corpus_directory_unreadable", "path": str(directory), "error": str(exc)},
            )
            return
        for entry in entries:
            if entry.is_symlink() and entry.is_dir():
                # Symlinked directories can point back at an ancestor.
                continue
            if entry.is_dir():
                yield from self._walk(entry)
            elif entry.is_file() and self._is_allowed(entry):
                yield entry

    def _is_allowed(self, path: Path) -> bool:
        return path.suffix.lower() in self._allowed_extensions

    def _read_document(self, path: Path, *, label: str) -> Document | None:
        try:
            raw = path.read_bytes()
        except OSError as exc:
            logger.warning(
                "corpus_file_skipped",
                extra={"event": "corpus_file_skipped", "path": str(path), "error": str(exc)},
            )
            return None

        result = self._registry.parse(content=raw, file_name=path.name)
        if result.error is not None:
            logger.warning(
                "corpus_file_skipped",
                extra={
                    "event": "corpus_file_skipped",
                    "path": str(path),
                    "parser_id": result.parser_id,
                    "error": result.error,
                },
            )
            return None
        return Document(path=label, content=result.text)


def build_planning_collector(settings: Settings) -> CorpusCollector:
    return CorpusCollector(settings.planning_extensions_set)


def build_summary_collector(settings: Settings) -> CorpusCollector:
    # Summaries are built from text formats only; PDFs are a planning-only input.
    return CorpusCollector(settings.summary_extensions_set)
