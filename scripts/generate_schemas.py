# scripts/generate_schemas.py
"""Dump JSON schemas for the payloads the storytree core accepts and returns.

Request models are written in validation mode, response models in
serialization mode, so clients see exactly what each side of a call carries.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from pydantic import BaseModel

from storytree.models import (
    ChapterDetails,
    ChapterNode,
    CreatePullRequestInput,
    PullRequest,
    Story,
    StoryCollaborator,
    StorySettings,
)

REQUEST_MODELS: tuple[type[BaseModel], ...] = (CreatePullRequestInput, StorySettings)
RESPONSE_MODELS: tuple[type[BaseModel], ...] = (
    Story,
    StoryCollaborator,
    ChapterDetails,
    ChapterNode,
    PullRequest,
)


def schema_documents() -> dict[str, dict]:
    """Map ``<direction>/<Model>.json`` to the schema document for that model."""
    documents: dict[str, dict] = {}
    for model in REQUEST_MODELS:
        documents[f"requests/{model.__name__}.json"] = model.model_json_schema(mode="validation")
    for model in RESPONSE_MODELS:
        documents[f"responses/{model.__name__}.json"] = model.model_json_schema(
            mode="serialization"
        )
    return documents


def main(argv: list[str] | None = None) -> None:  # pragma: no cover - script entry
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--out",
        type=Path,
        default=Path(__file__).resolve().parents[1] / "docs" / "schemas",
        help="directory the schema files are written to",
    )
    args = parser.parse_args(argv)

    for relative, schema in schema_documents().items():
        path = args.out / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(schema, indent=2, sort_keys=True) + "\n")
        print(f"wrote {path}")


if __name__ == "__main__":  # pragma: no cover - CLI execution
    main()
