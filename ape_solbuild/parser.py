import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from ape.logging import logger
from ape.utils.basemodel import BaseModel

from ape_solbuild._models import SolcConfig

# Strings are matched first so that comment markers inside them are kept.
_COMMENT_PATTERN = re.compile(
    r"(?P<string>\"(?:\\.|[^\"\\\n])*\"|'(?:\\.|[^'\\\n])*')|(?P<comment>//[^\n]*|/\*.*?\*/)",
    re.DOTALL,
)
_IMPORT_PATTERN = re.compile(
    r"\bimport\s+(?:[^;\"']*?\bfrom\s*)?(?P<quote>[\"'])(?P<path>[^\"'\n]*)(?P=quote)[^;]*;",
    re.DOTALL,
)
_PRAGMA_PATTERN = re.compile(r"\bpragma\s+solidity\s+(?P<range>[^;]+);")


class ParsedContent(BaseModel):
    imports: list[str] = []
    version_pragmas: list[str] = []


class SolidityFilesCacheEntry(BaseModel):
    """
    What a previous build learned about a file.
    """

    source_name: str
    content_hash: str
    last_modification_date: datetime
    imports: list[str] = []
    version_pragmas: list[str] = []
    solc_config: Optional[SolcConfig] = None
    artifacts: list[str] = []


class SolidityFilesCache:
    """
    Per-file parse results from previous builds, keyed by absolute path.
    Only kept in memory; loading and persisting it is up to the caller.
    """

    def __init__(self, entries: Optional[dict[str, SolidityFilesCacheEntry]] = None):
        self._entries: dict[str, SolidityFilesCacheEntry] = dict(entries or {})

    def __contains__(self, absolute_path: Union[Path, str]) -> bool:
        return f"{absolute_path}" in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, absolute_path: Union[Path, str]) -> Optional[SolidityFilesCacheEntry]:
        return self._entries.get(f"{absolute_path}")

    def add_entry(self, absolute_path: Union[Path, str], entry: SolidityFilesCacheEntry):
        self._entries[f"{absolute_path}"] = entry

    def remove_entry(self, absolute_path: Union[Path, str]):
        self._entries.pop(f"{absolute_path}", None)

    def get_entries(self) -> list[SolidityFilesCacheEntry]:
        return list(self._entries.values())


def strip_comments(source: str) -> str:
    def replace(match: re.Match) -> str:
        if match.group("string") is not None:
            return match.group("string")

        # Keep line numbers stable.
        return "\n" * match.group("comment").count("\n")

    return _COMMENT_PATTERN.sub(replace, source)


def get_imports(source: str) -> list[str]:
    """
    The targets of every import statement, in order of appearance.

    Args:
        source (str): Solidity source code.

    Returns:
        list[str]
    """
    return [m.group("path") for m in _IMPORT_PATTERN.finditer(strip_comments(source))]


def get_version_pragmas(source: str) -> list[str]:
    return [
        " ".join(m.group("range").split())
        for m in _PRAGMA_PATTERN.finditer(strip_comments(source))
    ]


class Parser:
    """
    Extracts the imports and version pragmas of Solidity files.

    Results are cached by content hash for the lifetime of the parser,
    so one parser should be used per build.
    """

    def __init__(self, solidity_files_cache: Optional[SolidityFilesCache] = None):
        self._cache: dict[str, ParsedContent] = {}
        self._solidity_files_cache = solidity_files_cache

    def parse(self, raw_content: str, absolute_path: Path, content_hash: str) -> ParsedContent:
        cached = self._get_from_cache(absolute_path, content_hash)
        if cached is not None:
            return cached

        result = ParsedContent(
            imports=get_imports(raw_content), version_pragmas=get_version_pragmas(raw_content)
        )
        self._cache[content_hash] = result
        return result

    def _get_from_cache(self, absolute_path: Path, content_hash: str) -> Optional[ParsedContent]:
        if content_hash in self._cache:
            return self._cache[content_hash]

        elif self._solidity_files_cache is None:
            return None

        entry = self._solidity_files_cache.get_entry(absolute_path)
        if entry is None or entry.content_hash != content_hash:
            return None

        logger.debug(f"Using cached imports and pragmas for '{absolute_path}'.")
        return ParsedContent(imports=entry.imports, version_pragmas=entry.version_pragmas)
