import asyncio
from collections.abc import Iterable
from functools import partial
from pathlib import Path
from typing import Optional, Union

from ape.logging import logger

from ape_solbuild._models import (
    CompilationJobCreationError,
    CompilationJobCreationErrorReason,
    ResolvedFile,
    SolidityConfig,
)
from ape_solbuild._utils import NODE_MODULES, Extension, local_path_to_source_name
from ape_solbuild.compilation_job import (
    CompilationJob,
    create_compilation_job_from_file,
    create_compilation_jobs_from_connected_component,
    get_compilation_job_creation_errors_message,
    get_input_from_compilation_job,
    merge_compilation_jobs_without_bug,
)
from ape_solbuild.dependency_graph import DependencyGraph
from ape_solbuild.exceptions import CompilationJobsCreationError
from ape_solbuild.parser import Parser, SolidityFilesCache
from ape_solbuild.resolver import TOOL_PACKAGE_NAME, HashContent, ReadFile, Resolver


class BuildPlan:
    """
    The compiler runs needed to build a set of files, and the files no
    configured compiler can build.
    """

    def __init__(
        self,
        jobs: list[CompilationJob],
        creation_errors: list[CompilationJobCreationError],
        dependency_graph: Optional[DependencyGraph] = None,
    ):
        self.jobs = jobs
        self.creation_errors = creation_errors
        self.dependency_graph = dependency_graph

    def __repr__(self) -> str:
        return f"<BuildPlan jobs={len(self.jobs)} errors={len(self.creation_errors)}>"

    @property
    def has_errors(self) -> bool:
        return len(self.creation_errors) > 0

    @property
    def errors(self) -> dict[CompilationJobCreationErrorReason, list[str]]:
        errors: dict[CompilationJobCreationErrorReason, list[str]] = {}
        for error in self.creation_errors:
            errors.setdefault(error.reason, []).append(error.file.source_name)

        return errors

    def get_compiler_inputs(self) -> list[dict]:
        """
        The standard-JSON input of each job, in the same order as ``jobs``.
        """
        return [get_input_from_compilation_job(job) for job in self.jobs]

    def raise_on_errors(self):
        """
        Raises:
            :class:`~ape_solbuild.exceptions.CompilationJobsCreationError`: When
              any file could not be assigned a compiler.
        """
        if self.has_errors:
            raise CompilationJobsCreationError(
                get_compilation_job_creation_errors_message(self.creation_errors)
            )


class SolidityBuildPlanner:
    """
    Plans the compilation of a project: resolves the requested files and
    everything they import, then decides which compiler builds what.

    Usage example::

        planner = SolidityBuildPlanner(project_root, SolidityConfig(compilers=[...]))
        plan = await planner.plan(planner.find_source_names())
        plan.raise_on_errors()
        inputs = plan.get_compiler_inputs()
    """

    def __init__(
        self,
        project_root: Union[Path, str],
        config: SolidityConfig,
        parser: Optional[Parser] = None,
        solidity_files_cache: Optional[SolidityFilesCache] = None,
        read_file: Optional[ReadFile] = None,
        hash_content: Optional[HashContent] = None,
        tool_package_name: str = TOOL_PACKAGE_NAME,
        tool_installation_dir: Optional[Path] = None,
    ):
        self.project_root = Path(project_root).absolute()
        self.config = config
        self.parser = parser or Parser(solidity_files_cache=solidity_files_cache)
        self.resolver = Resolver(
            self.project_root,
            self.parser,
            read_file=read_file,
            hash_content=hash_content,
            tool_package_name=tool_package_name,
            tool_installation_dir=tool_installation_dir,
        )

    def find_source_names(self, contracts_folder: Optional[Path] = None) -> list[str]:
        """
        The source names of every Solidity file in the project, outside of
        installed packages.

        Args:
            contracts_folder (Optional[Path]): Only look in this folder.
              Defaults to the whole project.

        Returns:
            list[str]
        """
        base_path = contracts_folder or self.project_root
        paths = [
            p
            for p in base_path.rglob(f"*{Extension.SOL.value}")
            if p.is_file() and NODE_MODULES not in p.relative_to(base_path).parts
        ]
        return sorted(local_path_to_source_name(self.project_root, p) for p in paths)

    async def resolve_source_names(self, source_names: Iterable[str]) -> list[ResolvedFile]:
        return list(
            await asyncio.gather(*(self.resolver.resolve_source_name(n) for n in source_names))
        )

    async def create_dependency_graph(self, source_names: Iterable[str]) -> DependencyGraph:
        resolved_files = await self.resolve_source_names(source_names)
        return await DependencyGraph.create_from_resolved_files(self.resolver, resolved_files)

    def has_known_bug(self, job: CompilationJob) -> bool:
        return job.has_known_bug(self.config.known_bug_versions)

    async def plan(self, source_names: Iterable[str]) -> BuildPlan:
        """
        Plan the compilation of the given files.

        Files that cannot be resolved abort the planning. Files that can't
        be assigned a compiler are reported in the plan instead.

        Args:
            source_names (Iterable[str]): The files to build.

        Returns:
            :class:`~ape_solbuild.planner.BuildPlan`
        """
        dependency_graph = await self.create_dependency_graph(source_names)
        get_job_for_file = partial(create_compilation_job_from_file, solidity_config=self.config)
        results = await asyncio.gather(
            *(
                create_compilation_jobs_from_connected_component(
                    component, get_job_for_file, has_known_bug=self.has_known_bug
                )
                for component in dependency_graph.get_connected_components()
            )
        )

        jobs = [job for result in results for job in result.jobs]
        creation_errors = [error for result in results for error in result.creation_errors]
        jobs = merge_compilation_jobs_without_bug(jobs, self.has_known_bug)
        logger.debug(
            f"Planned {len(jobs)} compilation job(s). "
            f"{len(creation_errors)} file(s) can't be compiled."
        )
        return BuildPlan(jobs, creation_errors, dependency_graph=dependency_graph)
