"""Export the coding API OpenAPI document as YAML."""

from __future__ import annotations

import argparse
from pathlib import Path

import yaml

from coding_api.main import app

DEFAULT_OUTPUT = Path(__file__).resolve().parents[2] / "docs" / "openapi.yaml"


def export_openapi(output_path: Path = DEFAULT_OUTPUT) -> Path:
    """Write the app's OpenAPI schema to ``output_path`` and return the path."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        yaml.safe_dump(app.openapi(), sort_keys=False),
        encoding="utf-8",
    )
    return output_path


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT)
    args = parser.parse_args()
    print(export_openapi(args.output))


if __name__ == "__main__":
    main()
