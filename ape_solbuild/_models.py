import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ape.api import PluginConfig
from ape.utils.basemodel import BaseModel
from pydantic import ConfigDict, model_validator

from ape_solbuild._utils import pragma_to_specifier_sets, version_satisfies
from ape_solbuild.exceptions import SolidityInvariantError

# This should have a proper version range once the optimizer bug is fixed
# upstream (solidity issue 9573).
SOLC_BUG_9573_VERSIONS = "*"


class FileContent(BaseModel):
    """
    The raw text of a source file plus what the parser extracted from it.
    """

    model_config = ConfigDict(frozen=True)

    raw_content: str
    imports: list[str] = []
    """
    Import targets, exactly as written in the import statements.
    """

    version_pragmas: list[str] = []
    """
    The values of every ``pragma solidity`` statement, such as ``^0.8.0``.
    """


class LibraryInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str


class ResolvedFile(BaseModel):
    """
    A uniquely-identified source file. Resolved files are created once per
    source name by the resolver and never change afterwards, so they are
    shared freely between graphs, compilation jobs and error values.
    """

    model_config = ConfigDict(frozen=True)

    source_name: str
    """
    The canonical, forward-slash name the compiler knows this file by.
    """

    absolute_path: Path
    content: FileContent
    content_hash: str
    last_modification_date: datetime

    library: Optional[LibraryInfo] = None
    """
    Set only when the file comes from an installed package.
    """

    @model_validator(mode="before")
    @classmethod
    def validate_library(cls, values):
        if not isinstance(values, dict):
            return values

        values = {**values}
        library_name = values.pop("library_name", None)
        library_version = values.pop("library_version", None)
        if library_name is None and library_version is None:
            return values

        elif library_name is None or library_version is None:
            raise SolidityInvariantError(
                "Libraries should have both name and version, or neither one."
            )

        return {**values, "library": {"name": library_name, "version": library_version}}

    def __hash__(self) -> int:
        return hash(self.source_name)

    def __repr__(self) -> str:
        return f"<ResolvedFile {self.versioned_name}>"

    @property
    def versioned_name(self) -> str:
        if library := self.library:
            return f"{self.source_name}@v{library.version}"

        return self.source_name


class TransitiveDependency(BaseModel):
    dependency: ResolvedFile
    path: list[ResolvedFile] = []
    """
    The files traversed between the file whose dependencies were requested
    and ``dependency`` (both excluded). Empty for direct dependencies.
    """


class SolcConfig(BaseModel):
    """
    One compiler configuration: a ``solc`` version and its settings.
    """

    version: str
    settings: dict[str, Any] = {}

    @property
    def key(self) -> str:
        """
        A stable identifier; two configurations are identical iff their keys match.
        """
        return json.dumps(
            {"version": self.version, "settings": self.settings}, sort_keys=True, default=str
        )

    def has_known_bug(self, affected_versions: str = SOLC_BUG_9573_VERSIONS) -> bool:
        """
        ``True`` when compiling with this configuration can trigger the
        optimizer bug that forbids splitting related sources across several
        compiler runs.
        """
        optimizer = self.settings.get("optimizer") or {}
        if optimizer.get("enabled") is not True:
            return False

        return version_satisfies(self.version, pragma_to_specifier_sets(affected_versions))


class SolidityConfig(PluginConfig):
    """
    The compilers a build may use.
    """

    compilers: list[SolcConfig] = []
    """
    The available compiler configurations. Each file uses the newest
    one its version pragmas (and those of its dependencies) allow.
    """

    overrides: dict[str, SolcConfig] = {}
    """
    Compiler configurations forced for specific source names.
    """

    known_bug_versions: str = SOLC_BUG_9573_VERSIONS
    """
    The version range affected by the optimizer bug. Jobs using an
    affected configuration with the optimizer enabled are never split.
    """

    @property
    def compiler_versions(self) -> list[str]:
        return [c.version for c in self.compilers]


class CompilationJobCreationErrorReason(Enum):
    NO_COMPATIBLE_SOLC_VERSION_FOUND = "no-compatible-solc-version-found"
    INCOMPATIBLE_OVERRIDDEN_SOLC_VERSION = "incompatible-overridden-solc-version"
    DIRECTLY_IMPORTS_INCOMPATIBLE_FILE = "directly-imports-incompatible-file"
    INDIRECTLY_IMPORTS_INCOMPATIBLE_FILES = "indirectly-imports-incompatible-files"
    OTHER_ERROR = "other"

    # Alias.
    IMPORTS_INCOMPATIBLE_FILE = "directly-imports-incompatible-file"


class CompilationJobCreationError(BaseModel):
    """
    Why a file could not be assigned a compiler. This is a value returned
    by planning, never raised, so that every failing file of a project can
    be reported at once.
    """

    reason: CompilationJobCreationErrorReason
    file: ResolvedFile
    direct_dependencies: list[ResolvedFile] = []
    candidate_versions: list[str] = []
    incompatible_direct_imports: list[ResolvedFile] = []
    incompatible_indirect_imports: list[TransitiveDependency] = []
