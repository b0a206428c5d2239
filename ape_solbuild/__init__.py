from typing import Any

from ape import plugins


@plugins.register(plugins.Config)
def config_class():
    from ._models import SolidityConfig

    return SolidityConfig


def __getattr__(name: str) -> Any:
    if name == "Extension":
        from ._utils import Extension

        return Extension

    elif name in (
        "CompilationJobCreationError",
        "CompilationJobCreationErrorReason",
        "FileContent",
        "LibraryInfo",
        "ResolvedFile",
        "SolcConfig",
        "SolidityConfig",
        "TransitiveDependency",
    ):
        from . import _models

        return getattr(_models, name)

    elif name in ("Parser", "SolidityFilesCache", "SolidityFilesCacheEntry"):
        from . import parser

        return getattr(parser, name)

    elif name == "Resolver":
        from .resolver import Resolver

        return Resolver

    elif name == "DependencyGraph":
        from .dependency_graph import DependencyGraph

        return DependencyGraph

    elif name in (
        "CompilationJob",
        "create_compilation_job_from_file",
        "create_compilation_jobs_from_connected_component",
        "get_compilation_job_creation_errors_message",
        "get_input_from_compilation_job",
        "merge_compilation_jobs_with_bug",
        "merge_compilation_jobs_without_bug",
    ):
        from . import compilation_job

        return getattr(compilation_job, name)

    elif name in ("BuildPlan", "SolidityBuildPlanner"):
        from . import planner

        return getattr(planner, name)

    else:
        raise AttributeError(name)


__all__ = [
    "BuildPlan",
    "CompilationJob",
    "CompilationJobCreationError",
    "CompilationJobCreationErrorReason",
    "DependencyGraph",
    "Extension",
    "FileContent",
    "LibraryInfo",
    "Parser",
    "ResolvedFile",
    "Resolver",
    "SolcConfig",
    "SolidityBuildPlanner",
    "SolidityConfig",
    "SolidityFilesCache",
    "SolidityFilesCacheEntry",
    "TransitiveDependency",
    "create_compilation_job_from_file",
    "create_compilation_jobs_from_connected_component",
    "get_compilation_job_creation_errors_message",
    "get_input_from_compilation_job",
    "merge_compilation_jobs_with_bug",
    "merge_compilation_jobs_without_bug",
]
