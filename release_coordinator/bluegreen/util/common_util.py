import os
from pathlib import Path


def get_root_path():
    project_root = Path(os.environ.get("PROJECT_ROOT", ".")).resolve()
    return project_root


def resolve_path(path):
    """Relative paths from config are taken from the project root."""
    path = Path(path)
    if path.is_absolute():
        return path
    return get_root_path() / path
