from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _isolated_vidshelf_env(  # pyright: ignore[reportUnusedFunction]
    monkeypatch: pytest.MonkeyPatch,
    tmp_path_factory: pytest.TempPathFactory,
) -> None:
    for name in list(os.environ):
        if name.startswith("VIDSHELF_"):
            monkeypatch.delenv(name, raising=False)
    workdir = tmp_path_factory.mktemp("vidshelf-cwd")
    monkeypatch.chdir(workdir)
