from collections.abc import Iterable
from copy import deepcopy
from typing import Any, Awaitable, Callable, Optional, Union

from ape.logging import logger

from ape_solbuild._models import (
    SOLC_BUG_9573_VERSIONS,
    CompilationJobCreationError,
    CompilationJobCreationErrorReason,
    ResolvedFile,
    SolcConfig,
    SolidityConfig,
    TransitiveDependency,
)
from ape_solbuild._utils import (
    DEFAULT_OUTPUT_SELECTION,
    combine_version_pragmas,
    get_versions_can_use,
    ranges_intersect,
    select_version,
    version_satisfies,
)
from ape_solbuild.dependency_graph import DependencyGraph
from ape_solbuild.exceptions import SolidityInvariantError


class CompilationJob:
    """
    One planned compiler run: a compiler configuration and the files it
    has to compile.
    """

    def __init__(self, solc_config: SolcConfig):
        self.solc_config = solc_config
        self._files_to_compile: dict[str, tuple[ResolvedFile, bool]] = {}

    def __repr__(self) -> str:
        return f"<CompilationJob solc={self.get_version()} files={len(self._files_to_compile)}>"

    def add_file_to_compile(self, file: ResolvedFile, emits_artifacts: bool = True):
        """
        Add a file to the job. A file that emits artifacts keeps emitting
        them, even if it is added again as a plain dependency.

        Args:
            file (:class:`~ape_solbuild._models.ResolvedFile`): The file.
            emits_artifacts (bool): ``False`` when the file is only needed
              by other files of the job.
        """
        if existing := self._files_to_compile.get(file.source_name):
            emits_artifacts = emits_artifacts or existing[1]

        self._files_to_compile[file.source_name] = (file, emits_artifacts)

    def merge(self, job: "CompilationJob") -> "CompilationJob":
        """
        A new job with the files of both jobs. Neither job is modified.

        Raises:
            :class:`~ape_solbuild.exceptions.SolidityInvariantError`: When the
              jobs use different compiler configurations.
        """
        if self.solc_config.key != job.solc_config.key:
            raise SolidityInvariantError("Merging jobs with different solidity configurations.")

        merged = CompilationJob(job.solc_config)
        for file, emits_artifacts in (
            *self._files_to_compile.values(),
            *job._files_to_compile.values(),
        ):
            merged.add_file_to_compile(file, emits_artifacts)

        return merged

    def get_solc_config(self) -> SolcConfig:
        return self.solc_config

    def get_version(self) -> str:
        return self.solc_config.version

    def is_empty(self) -> bool:
        return len(self._files_to_compile) == 0

    def get_resolved_files(self) -> list[ResolvedFile]:
        return [file for file, _ in self._files_to_compile.values()]

    def emits_artifacts(self, file: Optional[ResolvedFile] = None) -> bool:
        """
        Whether ``file`` emits artifacts in this job or, when no file is
        given, whether any file of the job does.

        Raises:
            :class:`~ape_solbuild.exceptions.SolidityInvariantError`: When
              ``file`` is not part of the job.
        """
        if file is None:
            return any(emits for _, emits in self._files_to_compile.values())

        elif file.source_name not in self._files_to_compile:
            raise SolidityInvariantError(
                f"File '{file.source_name}' does not belong to this compilation job."
            )

        return self._files_to_compile[file.source_name][1]

    def has_known_bug(self, affected_versions: str = SOLC_BUG_9573_VERSIONS) -> bool:
        return self.solc_config.has_known_bug(affected_versions)


CompilationJobResult = Union[CompilationJob, CompilationJobCreationError]
JobForFile = Callable[[DependencyGraph, ResolvedFile], Awaitable[CompilationJobResult]]
KnownBugPredicate = Callable[[CompilationJob], bool]


class CompilationJobsResult:
    """
    The planning outcome of a connected component: the merged jobs, plus
    every file that could not be planned.
    """

    def __init__(
        self, jobs: list[CompilationJob], creation_errors: list[CompilationJobCreationError]
    ):
        self.jobs = jobs
        self.creation_errors = creation_errors

    @property
    def errors(self) -> dict[CompilationJobCreationErrorReason, list[str]]:
        """
        The source names of the failing files, grouped by reason.
        """
        errors: dict[CompilationJobCreationErrorReason, list[str]] = {}
        for error in self.creation_errors:
            errors.setdefault(error.reason, []).append(error.file.source_name)

        return errors


def _version_range(file: ResolvedFile):
    return combine_version_pragmas(file.content.version_pragmas)


def _get_creation_error(
    file: ResolvedFile,
    direct_dependencies: list[ResolvedFile],
    transitive_dependencies: list[TransitiveDependency],
    candidate_versions: list[str],
    overridden: bool,
) -> CompilationJobCreationError:
    details: dict[str, Any] = {
        "file": file,
        "direct_dependencies": direct_dependencies,
        "candidate_versions": candidate_versions,
    }
    file_range = _version_range(file)
    if not get_versions_can_use(file_range, candidate_versions):
        reason = (
            CompilationJobCreationErrorReason.INCOMPATIBLE_OVERRIDDEN_SOLC_VERSION
            if overridden
            else CompilationJobCreationErrorReason.NO_COMPATIBLE_SOLC_VERSION_FOUND
        )
        return CompilationJobCreationError(reason=reason, **details)

    if incompatible_direct_imports := [
        d for d in direct_dependencies if not ranges_intersect(file_range, _version_range(d))
    ]:
        return CompilationJobCreationError(
            reason=CompilationJobCreationErrorReason.DIRECTLY_IMPORTS_INCOMPATIBLE_FILE,
            incompatible_direct_imports=incompatible_direct_imports,
            **details,
        )

    if incompatible_indirect_imports := [
        t
        for t in transitive_dependencies
        if not ranges_intersect(file_range, _version_range(t.dependency))
    ]:
        return CompilationJobCreationError(
            reason=CompilationJobCreationErrorReason.INDIRECTLY_IMPORTS_INCOMPATIBLE_FILES,
            incompatible_indirect_imports=incompatible_indirect_imports,
            **details,
        )

    return CompilationJobCreationError(
        reason=CompilationJobCreationErrorReason.OTHER_ERROR, **details
    )


def get_solc_config_for_file(
    file: ResolvedFile,
    direct_dependencies: list[ResolvedFile],
    transitive_dependencies: list[TransitiveDependency],
    solidity_config: SolidityConfig,
) -> Union[SolcConfig, CompilationJobCreationError]:
    """
    The configuration to compile ``file`` with: its override when it has
    one, otherwise the configured compiler with the newest version that
    satisfies the pragmas of the file and everything it imports.
    """
    version_range = combine_version_pragmas(
        [
            *file.content.version_pragmas,
            *[p for t in transitive_dependencies for p in t.dependency.content.version_pragmas],
        ]
    )

    # Overrides are the only option considered for the files they apply to.
    if overridden := solidity_config.overrides.get(file.source_name):
        if not version_satisfies(overridden.version, version_range):
            return _get_creation_error(
                file, direct_dependencies, transitive_dependencies, [overridden.version], True
            )

        return overridden

    compiler_versions = solidity_config.compiler_versions
    if not (version := select_version(version_range, compiler_versions)):
        return _get_creation_error(
            file, direct_dependencies, transitive_dependencies, compiler_versions, False
        )

    return next(c for c in solidity_config.compilers if c.version == version)


async def create_compilation_job_from_file(
    dependency_graph: DependencyGraph, file: ResolvedFile, solidity_config: SolidityConfig
) -> CompilationJobResult:
    """
    Plan the compilation of a single file.

    Args:
        dependency_graph (:class:`~ape_solbuild.dependency_graph.DependencyGraph`):
          A graph containing ``file``.
        file (:class:`~ape_solbuild._models.ResolvedFile`): The file to compile.
        solidity_config (:class:`~ape_solbuild._models.SolidityConfig`): The
          available compilers.

    Returns:
        Union[:class:`~ape_solbuild.compilation_job.CompilationJob`,
        :class:`~ape_solbuild._models.CompilationJobCreationError`]: A job where
        only ``file`` emits artifacts, or why no compiler can be used.
    """
    direct_dependencies = dependency_graph.get_dependencies(file)
    transitive_dependencies = dependency_graph.get_transitive_dependencies(file)
    solc_config = get_solc_config_for_file(
        file, direct_dependencies, transitive_dependencies, solidity_config
    )
    if isinstance(solc_config, CompilationJobCreationError):
        logger.debug(f"File '{file.source_name}' can't be compiled ({solc_config.reason.value}).")
        return solc_config

    version = solc_config.version
    logger.debug(f"File '{file.source_name}' will be compiled with version '{version}'.")
    job = CompilationJob(solc_config)
    job.add_file_to_compile(file, True)
    for transitive_dependency in transitive_dependencies:
        logger.debug(
            f"File '{transitive_dependency.dependency.source_name}' "
            f"added as dependency of '{file.source_name}'."
        )
        job.add_file_to_compile(transitive_dependency.dependency, False)

    return job


def _default_has_known_bug(job: CompilationJob) -> bool:
    return job.has_known_bug()


def merge_compilation_jobs(
    jobs: Iterable[CompilationJob], is_mergeable: Callable[[CompilationJob], bool]
) -> list[CompilationJob]:
    """
    Combine the mergeable jobs of each configuration into a single job.
    Jobs that are not mergeable are kept as they are.

    Raises:
        :class:`~ape_solbuild.exceptions.SolidityInvariantError`: When a mergeable
          job has the configuration of a job that was kept separate.
    """
    jobs_by_config: dict[str, list[CompilationJob]] = {}
    for job in jobs:
        key = job.solc_config.key
        merged_jobs = jobs_by_config.get(key)
        if not is_mergeable(job):
            jobs_by_config[key] = [*(merged_jobs or []), job]

        elif merged_jobs is None:
            jobs_by_config[key] = [job]

        elif len(merged_jobs) == 1:
            jobs_by_config[key] = [merged_jobs[0].merge(job)]

        else:
            raise SolidityInvariantError(
                "More than one mergeable job was added for the same configuration."
            )

    return [job for merged_jobs in jobs_by_config.values() for job in merged_jobs]


def merge_compilation_jobs_with_bug(
    jobs: Iterable[CompilationJob], has_known_bug: KnownBugPredicate = _default_has_known_bug
) -> list[CompilationJob]:
    """
    Merge the jobs affected by the optimizer bug: files of a connected
    component that share an affected configuration must be compiled together.
    """
    return merge_compilation_jobs(jobs, has_known_bug)


def merge_compilation_jobs_without_bug(
    jobs: Iterable[CompilationJob], has_known_bug: KnownBugPredicate = _default_has_known_bug
) -> list[CompilationJob]:
    return merge_compilation_jobs(jobs, lambda job: not has_known_bug(job))


async def create_compilation_jobs_from_connected_component(
    connected_component: DependencyGraph,
    get_job_for_file: JobForFile,
    has_known_bug: KnownBugPredicate = _default_has_known_bug,
) -> CompilationJobsResult:
    """
    Plan every file of a connected component. Files that cannot be
    planned are collected instead of stopping the planning.

    Jobs affected by the optimizer bug are merged into one job per
    configuration first. Unaffected jobs are then merged as well, so the
    component needs at most one compiler run per configuration. Merging
    across components is left to the caller, which must only merge the
    unaffected jobs (see :func:`merge_compilation_jobs_without_bug`).

    Args:
        connected_component (:class:`~ape_solbuild.dependency_graph.DependencyGraph`):
          The component.
        get_job_for_file (Callable): Plans a single file, such as
          :func:`~ape_solbuild.compilation_job.create_compilation_job_from_file`.
        has_known_bug (Callable): Whether a job is affected by the optimizer bug.

    Returns:
        :class:`~ape_solbuild.compilation_job.CompilationJobsResult`
    """
    jobs: list[CompilationJob] = []
    creation_errors: list[CompilationJobCreationError] = []
    for file in connected_component.get_resolved_files():
        result = await get_job_for_file(connected_component, file)
        if isinstance(result, CompilationJobCreationError):
            logger.debug(
                f"'{file.source_name}' couldn't be compiled. Reason: '{result.reason.value}'."
            )
            creation_errors.append(result)
            continue

        elif result.is_empty() or not result.emits_artifacts(file):
            continue

        jobs.append(result)

    merged_jobs = merge_compilation_jobs_with_bug(jobs, has_known_bug)
    merged_jobs = merge_compilation_jobs_without_bug(merged_jobs, has_known_bug)
    return CompilationJobsResult(merged_jobs, creation_errors)


def get_input_from_compilation_job(job: CompilationJob) -> dict:
    """
    The standard-JSON input for running the job's compiler.
    Settings of the job take precedence over the defaults, except that
    ``metadata`` is merged key by key.

    Args:
        job (:class:`~ape_solbuild.compilation_job.CompilationJob`): The job.

    Returns:
        dict
    """
    sources = {
        file.source_name: {"content": file.content.raw_content}
        for file in sorted(job.get_resolved_files(), key=lambda f: f.source_name)
    }
    job_settings = deepcopy(job.get_solc_config().settings)
    settings = {
        "outputSelection": deepcopy(DEFAULT_OUTPUT_SELECTION),
        **job_settings,
        # Partial metadata settings keep the defaults they don't set.
        "metadata": {"useLiteralContent": True, **job_settings.get("metadata", {})},
    }
    return {"language": "Solidity", "sources": sources, "settings": settings}


def _format_file(file: ResolvedFile) -> str:
    pragmas = " ".join(file.content.version_pragmas) or "no pragma"
    return f"{file.versioned_name} ({pragmas})"


def get_compilation_job_creation_errors_message(
    errors: Iterable[CompilationJobCreationError],
) -> str:
    """
    A report of every file that couldn't be planned, grouped by reason.
    """
    errors_by_reason: dict[CompilationJobCreationErrorReason, list] = {}
    for error in errors:
        errors_by_reason.setdefault(error.reason, []).append(error)

    sections = []
    for reason, reason_errors in errors_by_reason.items():
        if reason is CompilationJobCreationErrorReason.NO_COMPATIBLE_SOLC_VERSION_FOUND:
            header = (
                "The version pragmas of these files don't match any configured compiler. "
                "Change the pragmas or configure additional compiler versions."
            )
            lines = [f"  * {_format_file(e.file)}" for e in reason_errors]

        elif reason is CompilationJobCreationErrorReason.INCOMPATIBLE_OVERRIDDEN_SOLC_VERSION:
            header = "The compiler overrides of these files don't satisfy their version pragmas."
            lines = [
                f"  * {_format_file(e.file)}, overridden to '{', '.join(e.candidate_versions)}'"
                for e in reason_errors
            ]

        elif reason is CompilationJobCreationErrorReason.DIRECTLY_IMPORTS_INCOMPATIBLE_FILE:
            header = "These files import files with an incompatible version pragma."
            lines = [
                f"  * {_format_file(e.file)} imports {_format_file(i)}"
                for e in reason_errors
                for i in e.incompatible_direct_imports
            ]

        elif reason is CompilationJobCreationErrorReason.INDIRECTLY_IMPORTS_INCOMPATIBLE_FILES:
            header = "These files depend on files with an incompatible version pragma."
            lines = []
            for error in reason_errors:
                for transitive in error.incompatible_indirect_imports:
                    via = " -> ".join(
                        f.source_name for f in (error.file, *transitive.path, transitive.dependency)
                    )
                    lines.append(
                        f"  * {_format_file(error.file)} depends on "
                        f"{_format_file(transitive.dependency)} via {via}"
                    )

        else:
            header = (
                "These files and their dependencies cannot be compiled with the configured "
                "compilers. Check their version pragmas are compatible with each other and "
                "with at least one compiler."
            )
            lines = [f"  * {_format_file(e.file)}" for e in reason_errors]

        sections.append("\n".join([header, "", *lines]))

    return "\n\n".join(sections)
