import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytest

from ape_solbuild._models import FileContent, ResolvedFile, SolcConfig, SolidityConfig
from ape_solbuild._utils import PACKAGE_MANIFEST, get_content_hash
from ape_solbuild.parser import Parser
from ape_solbuild.resolver import Resolver

PROJECT_NAME = "my-project"


def write_file(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf8")
    return path


def write_package(
    package_dir: Path, name: str, version: str = "1.0.0", files: Optional[dict[str, str]] = None
) -> Path:
    write_file(package_dir / PACKAGE_MANIFEST, json.dumps({"name": name, "version": version}))
    for file_name, content in (files or {}).items():
        write_file(package_dir / file_name, content)

    return package_dir


class FakeResolver:
    """
    Resolves imports written as source names, from a fixed set of files.
    """

    def __init__(self, files: list[ResolvedFile]):
        self.files = {f.source_name: f for f in files}

    async def resolve_import(self, from_: ResolvedFile, imported: str) -> ResolvedFile:
        # Give other tasks a chance to run, like real file reads would.
        await asyncio.sleep(0)
        return self.files[imported]


@pytest.fixture
def project_root(tmp_path):
    root = tmp_path / "project"
    write_file(root / PACKAGE_MANIFEST, json.dumps({"name": PROJECT_NAME, "version": "0.1.0"}))
    return root


@pytest.fixture
def node_modules(project_root):
    path = project_root / "node_modules"
    path.mkdir()
    return path


@pytest.fixture
def create_files(project_root):
    def fn(files: dict[str, str]) -> list[Path]:
        return [write_file(project_root / name, content) for name, content in files.items()]

    return fn


@pytest.fixture
def create_package(node_modules):
    def fn(name: str, version: str = "1.0.0", files: Optional[dict[str, str]] = None) -> Path:
        return write_package(node_modules.joinpath(*name.split("/")), name, version, files)

    return fn


@pytest.fixture
def parser():
    return Parser()


@pytest.fixture
def resolver(project_root, parser):
    return Resolver(project_root, parser)


@pytest.fixture
def make_resolved_file():
    def fn(
        source_name: str,
        imports: tuple[str, ...] = (),
        version_pragmas: tuple[str, ...] = (),
        library_name: Optional[str] = None,
        library_version: Optional[str] = None,
    ) -> ResolvedFile:
        raw_content = f"// {source_name}\n"
        return ResolvedFile(
            source_name=source_name,
            absolute_path=Path("/project").joinpath(*source_name.split("/")),
            content=FileContent(
                raw_content=raw_content,
                imports=list(imports),
                version_pragmas=list(version_pragmas),
            ),
            content_hash=get_content_hash(raw_content.encode("utf8")),
            last_modification_date=datetime.now(),
            library_name=library_name,
            library_version=library_version,
        )

    return fn


@pytest.fixture
def fake_resolver():
    return FakeResolver


@pytest.fixture
def solidity_config():
    def fn(*versions: str, optimizer: bool = False, **kwargs) -> SolidityConfig:
        settings = {"optimizer": {"enabled": optimizer, "runs": 200}}
        compilers = [SolcConfig(version=v, settings=settings) for v in versions]
        return SolidityConfig(compilers=compilers, **kwargs)

    return fn
