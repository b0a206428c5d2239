import asyncio
import json
import posixpath
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from ape.logging import logger

from ape_solbuild._models import FileContent, LibraryInfo, ResolvedFile
from ape_solbuild._utils import (
    NODE_MODULES,
    PACKAGE_MANIFEST,
    get_content_hash,
    get_file_true_case,
    get_library_name,
    get_uri_scheme,
    is_absolute_path_source_name,
    is_local_source_name,
    is_relative_import,
    is_scoped_package,
    local_source_name_to_path,
    normalize_source_name,
    replace_backslashes,
    validate_source_name_existence_and_casing,
    validate_source_name_format,
)
from ape_solbuild.exceptions import (
    FileNotFoundResolverError,
    IllegalImportError,
    ImportedFileNotFoundError,
    ImportedLibraryNotInstalledError,
    IncludesOwnPackageNameError,
    InvalidImportAbsolutePathError,
    InvalidImportBackslashError,
    InvalidImportOfDirectoryError,
    InvalidImportOutsideOfProjectError,
    InvalidImportProtocolError,
    InvalidImportWrongCasingError,
    InvalidReadOfDirectoryError,
    LibraryFileNotFoundError,
    LibraryNotInstalledError,
    SourceNameNotFoundError,
    SourceNameWrongCasingError,
    WrongSourceNameCasingError,
)
from ape_solbuild.parser import Parser

ReadFile = Callable[[Path], Awaitable[str]]
HashContent = Callable[[bytes], str]

TOOL_PACKAGE_NAME = "ape-solbuild"


async def read_source_file(absolute_path: Path) -> str:
    if absolute_path.is_dir():
        raise InvalidReadOfDirectoryError(absolute_path=f"{absolute_path}")

    return await asyncio.to_thread(absolute_path.read_text, encoding="utf8")


def find_library_manifest(library_name: str, from_dir: Path) -> Optional[Path]:
    """
    Look for ``node_modules/<library_name>/package.json`` in ``from_dir``
    and each of its parents, the way Node.js resolves packages.
    Symlinked packages are not followed.

    Args:
        library_name (str): The package name, including its scope if it has one.
        from_dir (Path): The directory to start from.

    Returns:
        Optional[Path]: The path to the manifest, or ``None`` when the
        package is not installed.
    """
    for directory in (from_dir, *from_dir.parents):
        if directory.name == NODE_MODULES:
            continue

        manifest = directory / NODE_MODULES / Path(*library_name.split("/")) / PACKAGE_MANIFEST
        if manifest.is_file():
            return manifest

    return None


class Resolver:
    """
    Turns source names and import statements into
    :class:`~ape_solbuild._models.ResolvedFile` objects.

    Every source name is resolved once per resolver; later requests get the
    same object back.
    """

    def __init__(
        self,
        project_root: Union[Path, str],
        parser: Parser,
        read_file: Optional[ReadFile] = None,
        hash_content: Optional[HashContent] = None,
        tool_package_name: str = TOOL_PACKAGE_NAME,
        tool_installation_dir: Optional[Path] = None,
    ):
        self.project_root = Path(project_root).absolute()
        self.tool_package_name = tool_package_name
        self.tool_installation_dir = tool_installation_dir
        self._parser = parser
        self._read_file = read_file or read_source_file
        self._hash_content = hash_content or get_content_hash
        self._cache: dict[str, ResolvedFile] = {}
        self._project_package_name: Optional[str] = None
        self._project_manifest_loaded = False

    async def resolve_source_name(self, source_name: str) -> ResolvedFile:
        """
        Resolve an entry point given by its source name.

        Raises:
            :class:`~ape_solbuild.exceptions.InvalidSourceNameFormatError`: When
              the name is not a normalized, forward-slash, relative source name.
            :class:`~ape_solbuild.exceptions.SolidityResolverError`: When the
              file or its library does not exist, or its casing differs.

        Args:
            source_name (str): The source name, such as ``contracts/Token.sol``
              or ``@openzeppelin/contracts/token/ERC20/ERC20.sol``.

        Returns:
            :class:`~ape_solbuild._models.ResolvedFile`
        """
        return await self._resolve_source_name(source_name)

    async def resolve_import(self, from_: ResolvedFile, imported: str) -> ResolvedFile:
        """
        Resolve an import statement found in ``from_``.

        Errors about the target are raised as import errors that name both
        the import and the importing file, with the original error as their cause.

        Args:
            from_ (:class:`~ape_solbuild._models.ResolvedFile`): The importing file.
            imported (str): The import target, exactly as written.

        Returns:
            :class:`~ape_solbuild._models.ResolvedFile`
        """
        arguments = {"imported": imported, "from_": from_.source_name}
        if scheme := get_uri_scheme(imported):
            raise InvalidImportProtocolError(**arguments, protocol=scheme)

        elif replace_backslashes(imported) != imported:
            raise InvalidImportBackslashError(**arguments)

        elif is_absolute_path_source_name(imported):
            raise InvalidImportAbsolutePathError(**arguments)

        elif await self._includes_own_package_name(imported):
            raise IncludesOwnPackageNameError(**arguments)

        try:
            if not is_relative_import(imported):
                lookup_dir = self._get_library_root(from_)
                return await self._resolve_source_name(normalize_source_name(imported), lookup_dir)

            elif self._is_relative_import_to_library(from_, imported):
                return await self._resolve_source_name(
                    self._relative_import_to_library_source_name(from_, imported)
                )

            source_name = self._relative_import_to_source_name(from_, imported)
            if from_.library is not None:
                library_root = self._get_library_root(from_)
                assert library_root  # For mypy
                return await self._resolve_library_file(source_name, library_root, from_.library)

            return await self._resolve_local_source_name(source_name)

        except (FileNotFoundResolverError, LibraryFileNotFoundError) as err:
            raise ImportedFileNotFoundError(**arguments) from err

        except WrongSourceNameCasingError as err:
            raise InvalidImportWrongCasingError(**arguments) from err

        except LibraryNotInstalledError as err:
            raise ImportedLibraryNotInstalledError(
                library=err.arguments["library"], from_=from_.source_name
            ) from err

        except InvalidReadOfDirectoryError as err:
            raise InvalidImportOfDirectoryError(**arguments) from err

    async def _resolve_source_name(
        self, source_name: str, library_lookup_dir: Optional[Path] = None
    ) -> ResolvedFile:
        cached = self._cache.get(source_name)
        if cached is not None:
            return cached

        validate_source_name_format(source_name)
        if self._is_local_source_name(source_name):
            return await self._resolve_local_source_name(source_name)

        return await self._resolve_library_source_name(source_name, library_lookup_dir)

    async def _resolve_local_source_name(self, source_name: str) -> ResolvedFile:
        try:
            validate_source_name_existence_and_casing(self.project_root, source_name)
        except SourceNameNotFoundError as err:
            raise FileNotFoundResolverError(file=source_name) from err
        except SourceNameWrongCasingError as err:
            raise WrongSourceNameCasingError(
                incorrect=source_name, correct=err.arguments["correct"]
            ) from err

        return await self._resolve_file(
            source_name, local_source_name_to_path(self.project_root, source_name)
        )

    async def _resolve_library_source_name(
        self, source_name: str, lookup_dir: Optional[Path] = None
    ) -> ResolvedFile:
        library_name = get_library_name(source_name)
        manifest = None
        if lookup_dir is not None:
            manifest = find_library_manifest(library_name, lookup_dir)

        manifest = manifest or find_library_manifest(library_name, self.project_root)
        if manifest is not None:
            library_root = manifest.parent
            modules_dir = library_root.parent
            if is_scoped_package(library_name):
                modules_dir = modules_dir.parent

            self._validate_library_name_casing(modules_dir, library_name, source_name)

        elif library_name == self.tool_package_name and self.tool_installation_dir is not None:
            # The tool's own sources are available even when it isn't installed in the project.
            library_root = self.tool_installation_dir
            manifest = library_root / PACKAGE_MANIFEST

        else:
            raise LibraryNotInstalledError(library=library_name)

        package_info = json.loads(await self._read_file(manifest))
        library = LibraryInfo(name=library_name, version=package_info.get("version", ""))
        return await self._resolve_library_file(source_name, library_root, library)

    async def _resolve_library_file(
        self, source_name: str, library_root: Path, library: LibraryInfo
    ) -> ResolvedFile:
        cached = self._cache.get(source_name)
        if cached is not None:
            return cached

        file_name = source_name[len(library.name) + 1 :]
        try:
            validate_source_name_existence_and_casing(library_root, file_name)
        except SourceNameNotFoundError as err:
            raise LibraryFileNotFoundError(file=source_name) from err
        except SourceNameWrongCasingError as err:
            raise WrongSourceNameCasingError(
                incorrect=source_name, correct=f"{library.name}/{err.arguments['correct']}"
            ) from err

        absolute_path = library_root.joinpath(*file_name.split("/")).resolve()
        return await self._resolve_file(source_name, absolute_path, library=library)

    async def _resolve_file(
        self, source_name: str, absolute_path: Path, library: Optional[LibraryInfo] = None
    ) -> ResolvedFile:
        cached = self._cache.get(source_name)
        if cached is not None:
            return cached

        raw_content = await self._read_file(absolute_path)
        last_modification_date = datetime.fromtimestamp(absolute_path.stat().st_ctime)
        content_hash = self._hash_content(raw_content.encode("utf8"))
        parsed_content = self._parser.parse(raw_content, absolute_path, content_hash)
        resolved_file = ResolvedFile(
            source_name=source_name,
            absolute_path=absolute_path,
            content=FileContent(
                raw_content=raw_content,
                imports=parsed_content.imports,
                version_pragmas=parsed_content.version_pragmas,
            ),
            content_hash=content_hash,
            last_modification_date=last_modification_date,
            library=library,
        )

        # Another task may have resolved the same file while this one was reading.
        resolved_file = self._cache.setdefault(source_name, resolved_file)
        logger.debug(f"Resolved '{resolved_file.versioned_name}'.")
        return resolved_file

    def _is_local_source_name(self, source_name: str) -> bool:
        # The tool's own sources are never local, even if a directory has the same name.
        if source_name.startswith(f"{self.tool_package_name}/"):
            return False

        return is_local_source_name(self.project_root, source_name)

    def _validate_library_name_casing(self, modules_dir: Path, library_name: str, source_name: str):
        try:
            true_case = get_file_true_case(modules_dir, library_name)
        except SourceNameNotFoundError as err:
            raise LibraryNotInstalledError(library=library_name) from err

        if true_case != library_name:
            raise WrongSourceNameCasingError(
                incorrect=source_name, correct=f"{true_case}{source_name[len(library_name):]}"
            )

    def _get_library_root(self, file: ResolvedFile) -> Optional[Path]:
        if file.library is None:
            return None

        depth = len(file.source_name.split("/")) - len(file.library.name.split("/"))
        return file.absolute_path.parents[depth - 1]

    def _join_relative_import(self, from_: ResolvedFile, imported: str) -> str:
        return normalize_source_name(posixpath.join(posixpath.dirname(from_.source_name), imported))

    def _is_relative_import_to_library(self, from_: ResolvedFile, imported: str) -> bool:
        if not is_relative_import(imported) or from_.library is not None:
            return False

        return NODE_MODULES in self._join_relative_import(from_, imported).split("/")

    def _relative_import_to_library_source_name(self, from_: ResolvedFile, imported: str) -> str:
        parts = self._join_relative_import(from_, imported).split("/")
        return "/".join(parts[parts.index(NODE_MODULES) + 1 :])

    def _relative_import_to_source_name(self, from_: ResolvedFile, imported: str) -> str:
        source_name = self._join_relative_import(from_, imported)
        if from_.library is None:
            if source_name == ".." or source_name.startswith("../"):
                raise InvalidImportOutsideOfProjectError(imported=imported, from_=from_.source_name)

        # Library files can only reach other libraries through non-relative imports.
        elif not source_name.startswith(f"{from_.library.name}/"):
            raise IllegalImportError(imported=imported, from_=from_.source_name)

        return source_name

    async def _includes_own_package_name(self, imported: str) -> bool:
        if not self._project_manifest_loaded:
            manifest = self.project_root / PACKAGE_MANIFEST
            if manifest.is_file():
                package_info = json.loads(await self._read_file(manifest))
                self._project_package_name = package_info.get("name")

            self._project_manifest_loaded = True

        if not (name := self._project_package_name):
            return False

        return imported.startswith(f"{name}/")
