#!/usr/bin/env python3
"""Run the planning or summarization pipeline against a local folder and print the result JSON."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Sequence

from studyplan.api.services.subjects import (
    build_planning_pipeline,
    build_summary_pipeline,
    create_plans,
    summarize_subjects,
)
from studyplan.config import settings
from studyplan.generation import ModelClient
from studyplan.nova_runtime import BedrockNovaClient, NovaConfigurationError
from studyplan.observability import configure_logging


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate study plans or summaries from local files.")
    parser.add_argument("mode", choices=("plan", "summarize"), help="Which pipeline to run.")
    parser.add_argument("subjects", nargs="+", help="Subject names under the content root.")
    parser.add_argument("--id", default="cli", help="Requester id embedded in the prompt.")
    parser.add_argument("--content-root", default=None, help="Override CONTENT_ROOT.")
    parser.add_argument(
        "--source-path",
        default=None,
        help="Plan the first subject from this file or folder instead of the content root.",
    )
    parser.add_argument("--text", action="store_true", help="Return free text instead of structured output.")
    parser.add_argument("--out", default=None, help="Also write the JSON result to this path.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None, *, client: ModelClient | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(settings.log_level, settings.log_format)

    runtime_settings = settings.model_copy(deep=True)
    if args.content_root:
        runtime_settings.content_root = args.content_root
    model_client = client or BedrockNovaClient(settings=runtime_settings)
    structured = not args.text

    try:
        if args.mode == "plan":
            result = create_plans(
                args.id,
                args.subjects,
                structured=structured,
                source_path=args.source_path,
                pipeline=build_planning_pipeline(runtime_settings, model_client),
            )
        else:
            if args.source_path:
                raise SystemExit("--source-path is only supported for the plan mode.")
            result = summarize_subjects(
                args.id,
                args.subjects,
                structured=structured,
                pipeline=build_summary_pipeline(runtime_settings, model_client),
            )
    except NovaConfigurationError as exc:
        raise SystemExit(f"Model runtime is not configured: {exc}") from exc

    rendered = json.dumps(result, ensure_ascii=False, indent=2)
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(rendered, encoding="utf-8")
    print(rendered)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
