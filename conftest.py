"""Root conftest: test environment is fixed before ``convo_client.config`` is imported."""
from __future__ import annotations

import os
from pathlib import Path


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        os.environ.setdefault(key.strip(), value.strip())


_load_env_file(Path(__file__).resolve().parent / ".env.test")

# never pick up a developer's real credentials
os.environ["ACCESS_TOKEN"] = ""
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
