from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable


def set_umask_from_env() -> None:
    umask_value = os.environ.get("SW_UMASK", "002")
    try:
        os.umask(int(umask_value, 8))
    except (ValueError, TypeError):
        os.umask(0o002)


def ensure_runtime_dirs(paths: Iterable[str]) -> list[str]:
    created: list[str] = []
    for path in paths:
        if not path:
            continue
        if _ensure_dir(Path(path)):
            created.append(path)
    return created


def build_default_paths(data_dir: str, output_dir: str, images_dir: str) -> list[str]:
    return [
        data_dir,
        os.path.join(data_dir, "logs"),
        output_dir,
        images_dir,
    ]


def _ensure_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        return False
    try:
        path.chmod(0o775)
    except PermissionError:
        pass
    return True
