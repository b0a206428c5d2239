import ntpath
import posixpath
import re
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from ape.logging import logger
from ape.utils.os import get_relative_path
from eth_utils import keccak
from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from ape_solbuild.exceptions import (
    InvalidSourceNameAbsolutePathError,
    InvalidSourceNameBackslashesError,
    InvalidSourceNameNotNormalizedError,
    InvalidSourceNameRelativePathError,
    SourceNameExternalAsLocalError,
    SourceNameNodeModulesAsLocalError,
    SourceNameNotFoundError,
    SourceNameWrongCasingError,
)

NODE_MODULES = "node_modules"
PACKAGE_MANIFEST = "package.json"

OUTPUT_SELECTION = [
    "abi",
    "evm.bytecode",
    "evm.deployedBytecode",
    "evm.methodIdentifiers",
    "metadata",
]
DEFAULT_OUTPUT_SELECTION = {"*": {"*": OUTPUT_SELECTION, "": ["ast"]}}

URI_SCHEME_PATTERN = re.compile(r"([a-zA-Z]+)://")

# Version-range grammar (npm semver, as used by Solidity pragmas).
_PARTIAL_VERSION_PATTERN = re.compile(
    r"^v?(?P<major>\d+|[xX*])(?:\.(?P<minor>\d+|[xX*]))?(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)
_COMPARATOR_PATTERN = re.compile(r"^(?P<operator><=|>=|<|>|=|\^|~>|~)?\s*(?P<version>\S+)$")
_HYPHEN_RANGE_PATTERN = re.compile(r"^\s*(?P<lower>\S+)\s+-\s+(?P<upper>\S+)\s*$")
_OPERATOR_SPACING_PATTERN = re.compile(r"(<=|>=|<|>|=|\^|~>|~)\s+")

PartialVersion = tuple[Optional[int], Optional[int], Optional[int]]
Comparator = tuple[str, Version]


class Extension(Enum):
    SOL = ".sol"


def get_content_hash(content: bytes) -> str:
    return keccak(content).hex()


def strip_commit_hash(version: Union[str, Version]) -> Version:
    """
    Version('0.8.21+commit.d9974bed') => Version('0.8.21')> the simple way.
    """
    return Version(f"{str(version).split('+')[0].strip()}")


# Source names


def replace_backslashes(value: str) -> str:
    return value.replace("\\", "/")


def normalize_source_name(source_name: str) -> str:
    return posixpath.normpath(replace_backslashes(source_name))


def is_absolute_path_source_name(source_name: str) -> bool:
    return posixpath.isabs(source_name) or ntpath.isabs(source_name)


def is_relative_import(imported: str) -> bool:
    return imported.startswith("./") or imported.startswith("../")


def get_uri_scheme(value: str) -> Optional[str]:
    match = URI_SCHEME_PATTERN.search(value)
    return match.group(1) if match else None


def is_scoped_package(package_or_file: str) -> bool:
    return package_or_file.startswith("@")


def get_library_name(source_name: str) -> str:
    """
    The library a source name belongs to: its first segment, or its
    first two segments for scoped packages (``@scope/name``).
    """
    parts = source_name.split("/")
    size = 2 if is_scoped_package(source_name) else 1
    return "/".join(parts[:size])


def validate_source_name_format(source_name: str):
    if is_absolute_path_source_name(source_name):
        raise InvalidSourceNameAbsolutePathError(name=source_name)

    elif is_relative_import(source_name):
        raise InvalidSourceNameRelativePathError(name=source_name)

    elif replace_backslashes(source_name) != source_name:
        raise InvalidSourceNameBackslashesError(name=source_name)

    elif normalize_source_name(source_name) != source_name:
        raise InvalidSourceNameNotNormalizedError(name=source_name)


def get_file_true_case(from_dir: Path, relative_path: str) -> str:
    """
    Find the on-disk casing of ``relative_path`` (a forward-slash path)
    by matching each of its segments case-insensitively.

    Raises:
        :class:`~ape_solbuild.exceptions.SourceNameNotFoundError`: When no
          file matches, under any casing.

    Returns:
        str: The path as it is spelled on disk.
    """
    current = from_dir
    true_parts: list[str] = []
    for part in relative_path.split("/"):
        if not current.is_dir():
            raise SourceNameNotFoundError(name=relative_path)

        entries = [p.name for p in current.iterdir()]
        if part in entries:
            match: Optional[str] = part
        else:
            match = next((e for e in entries if e.lower() == part.lower()), None)

        if match is None:
            raise SourceNameNotFoundError(name=relative_path)

        true_parts.append(match)
        current = current / match

    return "/".join(true_parts)


def validate_source_name_existence_and_casing(from_dir: Path, source_name: str):
    true_case = get_file_true_case(from_dir, source_name)
    if true_case != source_name:
        raise SourceNameWrongCasingError(incorrect=source_name, correct=true_case)


def is_local_source_name(project_root: Path, source_name: str) -> bool:
    if NODE_MODULES in source_name.split("/"):
        return False

    first_dir_or_file = source_name.split("/")[0]
    try:
        get_file_true_case(project_root, first_dir_or_file)
    except SourceNameNotFoundError:
        return False

    return True


def local_path_to_source_name(project_root: Path, path: Path) -> str:
    relative = get_relative_path(path.absolute(), project_root.absolute())
    source_name = normalize_source_name(relative.as_posix())
    if source_name.startswith("../"):
        raise SourceNameExternalAsLocalError(path=f"{path}")

    elif NODE_MODULES in source_name.split("/"):
        raise SourceNameNodeModulesAsLocalError(path=f"{path}")

    return get_file_true_case(project_root, source_name)


def local_source_name_to_path(project_root: Path, source_name: str) -> Path:
    return project_root.joinpath(*source_name.split("/"))


# Version ranges


def _parse_partial_version(value: str) -> PartialVersion:
    match = _PARTIAL_VERSION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid version '{value}'.")

    numbers: list[Optional[int]] = []
    for key in ("major", "minor", "patch"):
        part = match.group(key)
        if part is None or part in ("x", "X", "*") or None in numbers:
            numbers.append(None)
        else:
            numbers.append(int(part))

    return numbers[0], numbers[1], numbers[2]


def _version(major: int, minor: int = 0, patch: int = 0) -> Version:
    return Version(f"{major}.{minor}.{patch}")


def _next_upper_bound(partial: PartialVersion) -> Optional[Comparator]:
    major, minor, _ = partial
    if major is None:
        return None
    elif minor is None:
        return "<", _version(major + 1)

    return "<", _version(major, minor + 1)


def _x_range(partial: PartialVersion) -> list[Comparator]:
    major, minor, patch = partial
    if major is None:
        return []
    elif patch is None:
        upper = _next_upper_bound(partial)
        assert upper  # For mypy
        return [(">=", _version(major, minor or 0)), upper]

    return [("==", _version(major, minor or 0, patch))]


def _caret_range(partial: PartialVersion) -> list[Comparator]:
    major, minor, patch = partial
    if major is None:
        return []

    lower = _version(major, minor or 0, patch or 0)
    if major > 0 or minor is None:
        upper = _version(major + 1)
    elif minor > 0 or patch is None:
        upper = _version(0, minor + 1)
    else:
        upper = _version(0, 0, patch + 1)

    return [(">=", lower), ("<", upper)]


def _tilde_range(partial: PartialVersion) -> list[Comparator]:
    major, minor, patch = partial
    if major is None:
        return []

    upper = _next_upper_bound(partial)
    assert upper  # For mypy
    return [(">=", _version(major, minor or 0, patch or 0)), upper]


def _primitive_range(operator: str, partial: PartialVersion) -> list[Comparator]:
    major, minor, patch = partial
    nothing = [("<", _version(0))]
    if operator == ">=":
        return [] if major is None else [(">=", _version(major, minor or 0, patch or 0))]

    elif operator == "<":
        return nothing if major is None else [("<", _version(major, minor or 0, patch or 0))]

    elif operator == ">":
        if major is None:
            return nothing
        elif patch is None:
            upper = _next_upper_bound(partial)
            assert upper  # For mypy
            return [(">=", upper[1])]

        return [(">", _version(major, minor or 0, patch))]

    # <=
    if major is None:
        return []
    elif patch is None:
        upper = _next_upper_bound(partial)
        assert upper  # For mypy
        return [upper]

    return [("<=", _version(major, minor or 0, patch))]


def _comparator_to_range(token: str) -> list[Comparator]:
    match = _COMPARATOR_PATTERN.match(token)
    if not match:
        raise ValueError(f"Invalid comparator '{token}'.")

    operator = match.group("operator") or ""
    partial = _parse_partial_version(match.group("version"))
    if operator in ("", "="):
        return _x_range(partial)
    elif operator == "^":
        return _caret_range(partial)
    elif operator in ("~", "~>"):
        return _tilde_range(partial)

    return _primitive_range(operator, partial)


def _hyphen_range(lower_str: str, upper_str: str) -> list[Comparator]:
    lower = _parse_partial_version(lower_str)
    upper = _parse_partial_version(upper_str)
    comparators = _primitive_range(">=", lower)
    if upper[0] is None:
        return comparators
    elif upper[2] is None:
        bound = _next_upper_bound(upper)
        assert bound  # For mypy
        return [*comparators, bound]

    return [*comparators, ("<=", _version(upper[0], upper[1] or 0, upper[2]))]


def _to_specifier_set(comparators: Iterable[Comparator]) -> SpecifierSet:
    return SpecifierSet(",".join(f"{op}{version}" for op, version in comparators))


def pragma_to_specifier_sets(pragma: str) -> list[SpecifierSet]:
    """
    Convert a Solidity version pragma (npm semver range syntax, such as
    ``^0.8.0``, ``>=0.5.0 <0.8.0`` or ``0.6.x || ^0.8.0``) into its
    alternatives, each a :class:`~packaging.specifiers.SpecifierSet`.

    A version satisfies the pragma when it is contained in any of the
    returned alternatives. Pragmas that cannot be parsed return an empty
    list, which nothing satisfies.

    Args:
        pragma (str): The version range, without the ``pragma solidity`` prefix.

    Returns:
        list[``packaging.specifiers.SpecifierSet``]
    """
    alternatives: list[SpecifierSet] = []
    try:
        for part in pragma.split("||"):
            if hyphen := _HYPHEN_RANGE_PATTERN.match(part):
                comparators = _hyphen_range(hyphen.group("lower"), hyphen.group("upper"))
            else:
                tokens = _OPERATOR_SPACING_PATTERN.sub(r"\1", part.strip()).split()
                comparators = [c for token in tokens for c in _comparator_to_range(token)]

            alternatives.append(_to_specifier_set(comparators))

    except (ValueError, InvalidVersion):
        logger.warning(f"Unable to parse version pragma '{pragma}'. No compiler can satisfy it.")
        return []

    return alternatives


def combine_version_pragmas(pragmas: Iterable[str]) -> list[SpecifierSet]:
    """
    Intersect several version pragmas into a single range.
    An empty collection of pragmas allows any version.
    """
    result = [SpecifierSet()]
    for pragma in dict.fromkeys(pragmas):
        alternatives = pragma_to_specifier_sets(pragma)
        result = [left & right for left in result for right in alternatives]

    return result


def version_satisfies(version: Union[str, Version], version_range: list[SpecifierSet]) -> bool:
    base_version = strip_commit_hash(version)
    return any(base_version in spec for spec in version_range)


def get_versions_can_use(version_range: list[SpecifierSet], options: Iterable[str]) -> list[str]:
    choices = [v for v in options if version_satisfies(v, version_range)]
    return sorted(choices, key=strip_commit_hash, reverse=True)


def select_version(version_range: list[SpecifierSet], options: Iterable[str]) -> Optional[str]:
    choices = get_versions_can_use(version_range, options)
    return choices[0] if choices else None


def _is_satisfiable(spec_set: SpecifierSet) -> bool:
    lower, lower_inclusive = Version("0"), True
    upper: Optional[Version] = None
    upper_inclusive = False
    excluded: set[Version] = set()

    for spec in spec_set:
        version = Version(spec.version)
        op = spec.operator
        if op in (">=", ">", "==") and (
            version > lower or (version == lower and op == ">" and lower_inclusive)
        ):
            lower, lower_inclusive = version, op != ">"

        if op in ("<=", "<", "==") and (
            upper is None or version < upper or (version == upper and op == "<")
        ):
            upper, upper_inclusive = version, op != "<"

        if op == "!=":
            excluded.add(version)

    if upper is None or lower < upper:
        return True
    elif lower == upper:
        return lower_inclusive and upper_inclusive and lower not in excluded

    return False


def ranges_intersect(left: list[SpecifierSet], right: list[SpecifierSet]) -> bool:
    """
    ``True`` when some version could satisfy both ranges, whether or not
    a compiler for that version is configured.
    """
    return any(_is_satisfiable(a & b) for a in left for b in right)
