from enum import Enum
from typing import Any, Dict, Optional, Type

from ape.exceptions import CompilerError


class ResolverErrorType(Enum):
    INVALID_SOURCE_NAME_ABSOLUTE_PATH = "INVALID_SOURCE_NAME_ABSOLUTE_PATH"
    INVALID_SOURCE_NAME_RELATIVE_PATH = "INVALID_SOURCE_NAME_RELATIVE_PATH"
    INVALID_SOURCE_NAME_BACKSLASHES = "INVALID_SOURCE_NAME_BACKSLASHES"
    INVALID_SOURCE_NAME_NOT_NORMALIZED = "INVALID_SOURCE_NAME_NOT_NORMALIZED"
    SOURCE_NAME_NOT_FOUND = "SOURCE_NAME_NOT_FOUND"
    SOURCE_NAME_WRONG_CASING = "SOURCE_NAME_WRONG_CASING"
    SOURCE_NAME_EXTERNAL_AS_LOCAL = "SOURCE_NAME_EXTERNAL_AS_LOCAL"
    SOURCE_NAME_NODE_MODULES_AS_LOCAL = "SOURCE_NAME_NODE_MODULES_AS_LOCAL"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    LIBRARY_NOT_INSTALLED = "LIBRARY_NOT_INSTALLED"
    LIBRARY_FILE_NOT_FOUND = "LIBRARY_FILE_NOT_FOUND"
    ILLEGAL_IMPORT = "ILLEGAL_IMPORT"
    IMPORTED_FILE_NOT_FOUND = "IMPORTED_FILE_NOT_FOUND"
    INVALID_IMPORT_BACKSLASH = "INVALID_IMPORT_BACKSLASH"
    INVALID_IMPORT_PROTOCOL = "INVALID_IMPORT_PROTOCOL"
    INVALID_IMPORT_ABSOLUTE_PATH = "INVALID_IMPORT_ABSOLUTE_PATH"
    INVALID_IMPORT_OUTSIDE_OF_PROJECT = "INVALID_IMPORT_OUTSIDE_OF_PROJECT"
    INVALID_IMPORT_WRONG_CASING = "INVALID_IMPORT_WRONG_CASING"
    WRONG_SOURCE_NAME_CASING = "WRONG_SOURCE_NAME_CASING"
    IMPORTED_LIBRARY_NOT_INSTALLED = "IMPORTED_LIBRARY_NOT_INSTALLED"
    INCLUDES_OWN_PACKAGE_NAME = "INCLUDES_OWN_PACKAGE_NAME"
    INVALID_IMPORT_OF_DIRECTORY = "INVALID_IMPORT_OF_DIRECTORY"
    INVALID_READ_OF_DIRECTORY = "INVALID_READ_OF_DIRECTORY"


class SolidityResolverError(CompilerError):
    """
    Base class for every error raised while turning source names and
    import statements into resolved files. Each subclass has a stable
    ``error_type`` tag and keeps the values used to render its message
    in ``arguments``.
    """

    error_type: ResolverErrorType
    message_template: str = ""

    def __init__(self, **arguments: Any):
        self.arguments: Dict[str, Any] = arguments
        super().__init__(self.message_template.format(**arguments))


class InvalidSourceNameFormatError(SolidityResolverError):
    """
    Raised when a source name is not a valid, normalized, forward-slash,
    package-relative name.
    """


class InvalidSourceNameAbsolutePathError(InvalidSourceNameFormatError):
    error_type = ResolverErrorType.INVALID_SOURCE_NAME_ABSOLUTE_PATH
    message_template = (
        "Invalid source name '{name}'. Expected source name but found an absolute path."
    )


class InvalidSourceNameRelativePathError(InvalidSourceNameFormatError):
    error_type = ResolverErrorType.INVALID_SOURCE_NAME_RELATIVE_PATH
    message_template = (
        "Invalid source name '{name}'. Expected source name but found a relative path."
    )


class InvalidSourceNameBackslashesError(InvalidSourceNameFormatError):
    error_type = ResolverErrorType.INVALID_SOURCE_NAME_BACKSLASHES
    message_template = (
        "Invalid source name '{name}'. "
        "The source name uses backslashes (\\) instead of slashes (/)."
    )


class InvalidSourceNameNotNormalizedError(InvalidSourceNameFormatError):
    error_type = ResolverErrorType.INVALID_SOURCE_NAME_NOT_NORMALIZED
    message_template = "Invalid source name '{name}'. Source names must be normalized."


class SourceNameNotFoundError(SolidityResolverError):
    """
    Raised by the source-name utilities when no file matches a source name,
    under any casing.
    """

    error_type = ResolverErrorType.SOURCE_NAME_NOT_FOUND
    message_template = "Solidity source file '{name}' not found."


class SourceNameWrongCasingError(SolidityResolverError):
    """
    Raised by the source-name utilities when a source name only matches
    a file using a different casing.
    """

    error_type = ResolverErrorType.SOURCE_NAME_WRONG_CASING
    message_template = (
        "Invalid source name '{incorrect}', its correct case-sensitive source name is '{correct}'."
    )


class SourceNameExternalAsLocalError(SolidityResolverError):
    error_type = ResolverErrorType.SOURCE_NAME_EXTERNAL_AS_LOCAL
    message_template = (
        "Trying to get a local source name for '{path}', which is outside the project."
    )


class SourceNameNodeModulesAsLocalError(SolidityResolverError):
    error_type = ResolverErrorType.SOURCE_NAME_NODE_MODULES_AS_LOCAL
    message_template = (
        "Trying to get a local source name for '{path}', which is inside a node_modules directory."
    )


class FileNotFoundResolverError(SolidityResolverError):
    error_type = ResolverErrorType.FILE_NOT_FOUND
    message_template = "File '{file}' doesn't exist."


class LibraryNotInstalledError(SolidityResolverError):
    """
    Raised when the package manifest of a library cannot be located.
    """

    error_type = ResolverErrorType.LIBRARY_NOT_INSTALLED
    message_template = "Library '{library}' is not installed."


class LibraryFileNotFoundError(SolidityResolverError):
    error_type = ResolverErrorType.LIBRARY_FILE_NOT_FOUND
    message_template = "File '{file}' doesn't exist."


class IllegalImportError(SolidityResolverError):
    """
    Raised when a library file uses a relative import to reach outside
    of its own library.
    """

    error_type = ResolverErrorType.ILLEGAL_IMPORT
    message_template = "Illegal import '{imported}' from '{from_}'."


class ImportedFileNotFoundError(SolidityResolverError):
    error_type = ResolverErrorType.IMPORTED_FILE_NOT_FOUND
    message_template = "File '{imported}', imported from '{from_}', not found."


class InvalidImportBackslashError(SolidityResolverError):
    error_type = ResolverErrorType.INVALID_IMPORT_BACKSLASH
    message_template = (
        "Invalid import '{imported}' from '{from_}'. "
        "Imports must use / instead of \\, even in Windows."
    )


class InvalidImportProtocolError(SolidityResolverError):
    error_type = ResolverErrorType.INVALID_IMPORT_PROTOCOL
    message_template = (
        "Invalid import '{imported}' from '{from_}'. Imports via '{protocol}' are not supported."
    )


class InvalidImportAbsolutePathError(SolidityResolverError):
    error_type = ResolverErrorType.INVALID_IMPORT_ABSOLUTE_PATH
    message_template = (
        "Invalid import '{imported}' from '{from_}'. Imports with absolute paths are not supported."
    )


class InvalidImportOutsideOfProjectError(SolidityResolverError):
    error_type = ResolverErrorType.INVALID_IMPORT_OUTSIDE_OF_PROJECT
    message_template = (
        "Invalid import '{imported}' from '{from_}'. "
        "The file being imported is outside of the project."
    )


class InvalidImportWrongCasingError(SolidityResolverError):
    error_type = ResolverErrorType.INVALID_IMPORT_WRONG_CASING
    message_template = (
        "Trying to import '{imported}' from '{from_}', but it has an incorrect casing."
    )


class WrongSourceNameCasingError(SolidityResolverError):
    """
    Raised when a source name exists only under a different casing.
    Casing must match exactly, whatever the filesystem's case sensitivity is.
    """

    error_type = ResolverErrorType.WRONG_SOURCE_NAME_CASING
    message_template = (
        "Trying to resolve the file '{incorrect}' "
        "but its correct case-sensitive name is '{correct}'."
    )


class ImportedLibraryNotInstalledError(SolidityResolverError):
    error_type = ResolverErrorType.IMPORTED_LIBRARY_NOT_INSTALLED
    message_template = (
        "The library '{library}', imported from '{from_}', is not installed. "
        "Try installing it using npm."
    )


class IncludesOwnPackageNameError(SolidityResolverError):
    error_type = ResolverErrorType.INCLUDES_OWN_PACKAGE_NAME
    message_template = (
        "Invalid import '{imported}' from '{from_}'. "
        "Trying to import file using the own package's name."
    )


class InvalidImportOfDirectoryError(SolidityResolverError):
    error_type = ResolverErrorType.INVALID_IMPORT_OF_DIRECTORY
    message_template = (
        "Invalid import '{imported}' from '{from_}'. "
        "Attempting to import a directory. Directories cannot be imported."
    )


class InvalidReadOfDirectoryError(SolidityResolverError):
    error_type = ResolverErrorType.INVALID_READ_OF_DIRECTORY
    message_template = (
        "Invalid file path '{absolute_path}'. Attempting to read a directory instead of a file."
    )


class SolidityInvariantError(CompilerError):
    """
    Raised when an internal invariant is violated. This is a programming
    error, not a problem with the project being built.
    """

    def __init__(self, message: str):
        super().__init__(f"An internal invariant was violated: {message}")


class CorruptedInstallationError(CompilerError):
    """
    Raised by a parser when a native dependency it needs is missing.
    Resolvers propagate it unmodified.
    """

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "The Solidity parser installation is corrupted. Please reinstall the package."
        )


class CompilationJobsCreationError(CompilerError):
    """
    Raised by callers that decide to abort a build because some files
    could not be assigned a compiler.
    """

    def __init__(self, report: str):
        self.report = report
        super().__init__(report)


RESOLVER_ERROR_MAP: Dict[ResolverErrorType, Type[SolidityResolverError]] = {
    cls.error_type: cls
    for cls in (
        InvalidSourceNameAbsolutePathError,
        InvalidSourceNameRelativePathError,
        InvalidSourceNameBackslashesError,
        InvalidSourceNameNotNormalizedError,
        SourceNameNotFoundError,
        SourceNameWrongCasingError,
        SourceNameExternalAsLocalError,
        SourceNameNodeModulesAsLocalError,
        FileNotFoundResolverError,
        LibraryNotInstalledError,
        LibraryFileNotFoundError,
        IllegalImportError,
        ImportedFileNotFoundError,
        InvalidImportBackslashError,
        InvalidImportProtocolError,
        InvalidImportAbsolutePathError,
        InvalidImportOutsideOfProjectError,
        InvalidImportWrongCasingError,
        WrongSourceNameCasingError,
        ImportedLibraryNotInstalledError,
        IncludesOwnPackageNameError,
        InvalidImportOfDirectoryError,
        InvalidReadOfDirectoryError,
    )
}
