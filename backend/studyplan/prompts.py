from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from studyplan.corpus import Document

TRUNCATION_MARKER = "\n\n[TRUNCATED]"


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    system: str
    task: str
    file_header: str = "--- File: {path} ---"


PLAN_TEMPLATE = PromptTemplate(
    name="plan",
    system=(
        "You are a helpful assistant that reads source or text files and returns "
        "a concise study-oriented plan in Korean."
    ),
    task=(
        "Please produce a concise, structured study plan (in Korean) that includes: key concepts, "
        "important code snippets or examples if relevant, and a short study plan (3-5 bullets). "
        "Keep the response focused and numbered where appropriate."
    ),
)

SUMMARY_TEMPLATE = PromptTemplate(
    name="summary",
    system=(
        "You are a helpful assistant that reads source or text files and returns "
        "a concise study-oriented summary in Korean."
    ),
    task=(
        "Please produce a concise, structured summary (in Korean) that includes: key concepts, "
        "important code snippets or examples if relevant, and a short study plan (3-5 bullets). "
        "Keep the response focused and numbered where appropriate."
    ),
)


def render_document_block(
    documents: Sequence[Document],
    max_chars: int,
    *,
    file_header: str = PLAN_TEMPLATE.file_header,
) -> tuple[str, bool]:
    combined = "\n\n".join(
        f"{file_header.format(path=document.path)}\n{document.content}" for document in documents
    )
    if len(combined) <= max_chars:
        return combined, False
    # The marker may push the block past max_chars; max_chars bounds document text only.
    return combined[:max_chars] + TRUNCATION_MARKER, True


def build_prompt(
    request_id: str,
    subject: str,
    documents: Sequence[Document],
    max_chars: int,
    template: PromptTemplate = PLAN_TEMPLATE,
) -> Prompt:
    block, _ = render_document_block(documents, max_chars, file_header=template.file_header)
    user = f"User ID: {request_id}\nSubject: {subject}\nFiles:\n{block}\n\n{template.task}"
    return Prompt(system=template.system, user=user)
