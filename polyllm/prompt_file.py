"""Prompt files: markdown with optional YAML front matter selecting models."""

from pathlib import Path

import frontmatter

OPTION_KEYS = ("models", "consensus_model", "json_model")


def _model_list(value) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part).strip() for part in value if str(part).strip()]
    raise ValueError(f"models must be a list or comma-separated string, got {type(value).__name__}")


def parse_prompt_file(file_path: Path) -> tuple[str, dict]:
    """Parse a markdown prompt file with optional YAML front matter.

    Returns:
        (content, options) where content is the body text and options holds
        only the recognized keys: models (list of ids), consensus_model and
        json_model (ids). If no front matter, options is {}.

    Raises:
        ValueError: If the body is empty or ``models`` has the wrong type.
    """
    post = frontmatter.load(str(file_path))
    content = post.content.strip()
    if not content:
        raise ValueError(f"Prompt file {file_path} has no prompt text")

    options: dict = {}
    for key in OPTION_KEYS:
        if key not in post.metadata or post.metadata[key] in (None, ""):
            continue
        value = post.metadata[key]
        options[key] = _model_list(value) if key == "models" else str(value).strip()
    return content, options
