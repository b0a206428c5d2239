import pytest

from ape_solbuild._models import (
    CompilationJobCreationError,
    CompilationJobCreationErrorReason,
    SolcConfig,
)
from ape_solbuild._utils import DEFAULT_OUTPUT_SELECTION
from ape_solbuild.compilation_job import (
    CompilationJob,
    create_compilation_job_from_file,
    create_compilation_jobs_from_connected_component,
    get_compilation_job_creation_errors_message,
    get_input_from_compilation_job,
    merge_compilation_jobs,
    merge_compilation_jobs_with_bug,
    merge_compilation_jobs_without_bug,
)
from ape_solbuild.dependency_graph import DependencyGraph
from ape_solbuild.exceptions import SolidityInvariantError

OPTIMIZED = SolcConfig(version="0.8.4", settings={"optimizer": {"enabled": True, "runs": 200}})
NOT_OPTIMIZED = SolcConfig(version="0.8.4", settings={"optimizer": {"enabled": False}})


@pytest.fixture
def create_graph(make_resolved_file, fake_resolver):
    """
    Creates a graph from ``{source_name: (imports, pragmas)}``, with every
    file as an entry point.
    """

    async def fn(files: dict[str, tuple[tuple[str, ...], tuple[str, ...]]]) -> DependencyGraph:
        resolved = [
            make_resolved_file(name, imports=imports, version_pragmas=pragmas)
            for name, (imports, pragmas) in files.items()
        ]
        return await DependencyGraph.create_from_resolved_files(fake_resolver(resolved), resolved)

    return fn


@pytest.fixture
def plan_file(create_graph):
    async def fn(files, solidity_config, source_name=None):
        graph = await create_graph(files)
        name = source_name or next(iter(files))
        file = next(f for f in graph.get_resolved_files() if f.source_name == name)
        return await create_compilation_job_from_file(graph, file, solidity_config)

    return fn


def _names(files) -> list[str]:
    return sorted(f.source_name for f in files)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "versions,pragma,expected",
    [
        (["0.5.5"], "^0.5.0", "0.5.5"),
        (["0.5.5", "0.6.6"], ">=0.5.0", "0.6.6"),
        (["0.6.6", "0.5.5", "0.5.17"], "^0.5.0", "0.5.17"),
    ],
)
async def test_create_compilation_job_from_file_newest_version(
    plan_file, solidity_config, versions, pragma, expected
):
    job = await plan_file({"Foo.sol": ((), (pragma,))}, solidity_config(*versions))
    assert isinstance(job, CompilationJob)
    assert job.get_version() == expected


@pytest.mark.asyncio
async def test_create_compilation_job_from_file_dependencies(plan_file, solidity_config):
    files = {
        "Foo.sol": (("Bar.sol",), ("^0.5.0",)),
        "Bar.sol": (("Qux.sol",), ()),
        "Qux.sol": ((), (">=0.5.5",)),
    }
    job = await plan_file(files, solidity_config("0.5.0", "0.5.5", "0.6.6"))
    assert job.get_version() == "0.5.5"
    emits = {f.source_name: job.emits_artifacts(f) for f in job.get_resolved_files()}
    assert emits == {"Foo.sol": True, "Bar.sol": False, "Qux.sol": False}


@pytest.mark.asyncio
async def test_create_compilation_job_from_file_override(plan_file, solidity_config):
    override = SolcConfig(version="0.5.0")
    config = solidity_config("0.5.5", overrides={"Foo.sol": override})
    job = await plan_file({"Foo.sol": ((), ("^0.5.0",))}, config)
    assert job.get_solc_config() == override


@pytest.mark.asyncio
async def test_create_compilation_job_from_file_incompatible_override(plan_file, solidity_config):
    config = solidity_config("0.5.5", overrides={"Foo.sol": SolcConfig(version="0.6.0")})
    error = await plan_file({"Foo.sol": ((), ("^0.5.0",))}, config)
    assert isinstance(error, CompilationJobCreationError)
    assert error.reason is CompilationJobCreationErrorReason.INCOMPATIBLE_OVERRIDDEN_SOLC_VERSION
    assert error.candidate_versions == ["0.6.0"]


@pytest.mark.asyncio
async def test_create_compilation_job_from_file_no_compatible_version(plan_file, solidity_config):
    error = await plan_file({"Foo.sol": ((), ("^0.7.0",))}, solidity_config("0.5.5", "0.6.6"))
    assert error.reason is CompilationJobCreationErrorReason.NO_COMPATIBLE_SOLC_VERSION_FOUND
    assert error.file.source_name == "Foo.sol"
    assert error.candidate_versions == ["0.5.5", "0.6.6"]


@pytest.mark.asyncio
async def test_create_compilation_job_from_file_imports_incompatible_file(
    plan_file, solidity_config
):
    files = {
        "Foo.sol": (("Bar.sol",), ("^0.5.0",)),
        "Bar.sol": ((), ("^0.6.0",)),
    }
    error = await plan_file(files, solidity_config("0.5.5", "0.6.6"))
    assert error.reason is CompilationJobCreationErrorReason.DIRECTLY_IMPORTS_INCOMPATIBLE_FILE
    assert _names(error.incompatible_direct_imports) == ["Bar.sol"]
    assert _names(error.direct_dependencies) == ["Bar.sol"]


@pytest.mark.asyncio
async def test_create_compilation_job_from_file_indirectly_imports_incompatible_file(
    plan_file, solidity_config
):
    files = {
        "Foo.sol": (("Bar.sol",), ("^0.5.0",)),
        "Bar.sol": (("Qux.sol",), ()),
        "Qux.sol": ((), ("^0.6.0",)),
    }
    error = await plan_file(files, solidity_config("0.5.5", "0.6.6"))
    assert error.reason is CompilationJobCreationErrorReason.INDIRECTLY_IMPORTS_INCOMPATIBLE_FILES
    assert len(error.incompatible_indirect_imports) == 1
    transitive = error.incompatible_indirect_imports[0]
    assert transitive.dependency.source_name == "Qux.sol"
    assert _names(transitive.path) == ["Bar.sol"]


@pytest.mark.asyncio
async def test_create_compilation_job_from_file_other_error(plan_file, solidity_config):
    # Both ranges accept 0.7.0, but no configured compiler satisfies both.
    files = {
        "Foo.sol": (("Bar.sol",), (">=0.5.0",)),
        "Bar.sol": ((), ("<0.5.5 || >0.6.0",)),
    }
    error = await plan_file(files, solidity_config("0.5.5"))
    assert error.reason is CompilationJobCreationErrorReason.OTHER_ERROR


@pytest.mark.asyncio
async def test_create_compilation_job_from_file_dependency_is_planned_alone(
    plan_file, solidity_config
):
    files = {
        "Foo.sol": (("Bar.sol",), ("^0.5.0",)),
        "Bar.sol": ((), ()),
    }
    job = await plan_file(files, solidity_config("0.5.5", "0.6.6"), source_name="Bar.sol")
    assert job.get_version() == "0.6.6"
    assert _names(job.get_resolved_files()) == ["Bar.sol"]


def test_add_file_to_compile_keeps_emitting(make_resolved_file):
    file = make_resolved_file("Foo.sol")
    job = CompilationJob(OPTIMIZED)
    job.add_file_to_compile(file, True)
    job.add_file_to_compile(file, False)
    assert job.emits_artifacts(file)
    assert len(job.get_resolved_files()) == 1

    other = make_resolved_file("Bar.sol")
    job.add_file_to_compile(other, False)
    assert not job.emits_artifacts(other)
    job.add_file_to_compile(other, True)
    assert job.emits_artifacts(other)


def test_emits_artifacts_unknown_file(make_resolved_file):
    job = CompilationJob(OPTIMIZED)
    assert job.is_empty()
    assert not job.emits_artifacts()
    with pytest.raises(SolidityInvariantError):
        job.emits_artifacts(make_resolved_file("Foo.sol"))


def test_merge(make_resolved_file):
    foo, bar, qux = (make_resolved_file(n) for n in ("Foo.sol", "Bar.sol", "Qux.sol"))
    first = CompilationJob(NOT_OPTIMIZED)
    first.add_file_to_compile(foo, True)
    first.add_file_to_compile(bar, False)
    second = CompilationJob(SolcConfig(version="0.8.4", settings={"optimizer": {"enabled": False}}))
    second.add_file_to_compile(bar, True)
    second.add_file_to_compile(qux, False)

    merged = first.merge(second)
    assert _names(merged.get_resolved_files()) == ["Bar.sol", "Foo.sol", "Qux.sol"]
    assert merged.emits_artifacts(foo)
    assert merged.emits_artifacts(bar)
    assert not merged.emits_artifacts(qux)

    # Neither job is modified.
    assert not first.emits_artifacts(bar)
    assert _names(first.get_resolved_files()) == ["Bar.sol", "Foo.sol"]
    assert _names(second.get_resolved_files()) == ["Bar.sol", "Qux.sol"]


def test_merge_different_configs():
    with pytest.raises(SolidityInvariantError):
        CompilationJob(OPTIMIZED).merge(CompilationJob(NOT_OPTIMIZED))


def _job(make_resolved_file, config: SolcConfig, source_name: str) -> CompilationJob:
    job = CompilationJob(config)
    job.add_file_to_compile(make_resolved_file(source_name), True)
    return job


def test_merge_compilation_jobs_with_bug(make_resolved_file):
    jobs = [
        _job(make_resolved_file, OPTIMIZED, "A.sol"),
        _job(make_resolved_file, OPTIMIZED, "B.sol"),
        _job(make_resolved_file, NOT_OPTIMIZED, "C.sol"),
        _job(make_resolved_file, NOT_OPTIMIZED, "D.sol"),
    ]
    merged = merge_compilation_jobs_with_bug(jobs)
    assert [_names(j.get_resolved_files()) for j in merged] == [
        ["A.sol", "B.sol"],
        ["C.sol"],
        ["D.sol"],
    ]


def test_merge_compilation_jobs_without_bug(make_resolved_file):
    jobs = [
        _job(make_resolved_file, OPTIMIZED, "A.sol"),
        _job(make_resolved_file, OPTIMIZED, "B.sol"),
        _job(make_resolved_file, NOT_OPTIMIZED, "C.sol"),
        _job(make_resolved_file, NOT_OPTIMIZED, "D.sol"),
        _job(make_resolved_file, SolcConfig(version="0.7.6"), "E.sol"),
    ]
    merged = merge_compilation_jobs_without_bug(jobs)
    assert [_names(j.get_resolved_files()) for j in merged] == [
        ["A.sol"],
        ["B.sol"],
        ["C.sol", "D.sol"],
        ["E.sol"],
    ]


def test_merge_compilation_jobs_custom_predicate(make_resolved_file):
    jobs = [
        _job(make_resolved_file, OPTIMIZED, "A.sol"),
        _job(make_resolved_file, OPTIMIZED, "B.sol"),
    ]
    merged = merge_compilation_jobs_without_bug(jobs, has_known_bug=lambda job: False)
    assert len(merged) == 1


def test_merge_compilation_jobs_mixed_mergeability(make_resolved_file):
    jobs = [
        _job(make_resolved_file, OPTIMIZED, "A.sol"),
        _job(make_resolved_file, OPTIMIZED, "B.sol"),
        _job(make_resolved_file, OPTIMIZED, "C.sol"),
    ]
    with pytest.raises(SolidityInvariantError):
        merge_compilation_jobs(jobs, lambda job: job is jobs[2])


@pytest.mark.asyncio
async def test_create_compilation_jobs_from_connected_component(create_graph, solidity_config):
    graph = await create_graph(
        {
            "Foo.sol": (("Bar.sol",), ("^0.5.0",)),
            "Bar.sol": ((), ("^0.5.0",)),
            "Baz.sol": (("Bar.sol",), ("^0.8.0",)),
        }
    )
    config = solidity_config("0.5.5", "0.8.4")

    async def get_job_for_file(component, file):
        return await create_compilation_job_from_file(component, file, config)

    result = await create_compilation_jobs_from_connected_component(graph, get_job_for_file)
    assert len(result.jobs) == 1
    job = result.jobs[0]
    assert _names(job.get_resolved_files()) == ["Bar.sol", "Foo.sol"]
    assert all(job.emits_artifacts(f) for f in job.get_resolved_files())
    assert result.errors == {
        CompilationJobCreationErrorReason.DIRECTLY_IMPORTS_INCOMPATIBLE_FILE: ["Baz.sol"]
    }


@pytest.mark.asyncio
async def test_create_compilation_jobs_from_connected_component_known_bug(
    create_graph, solidity_config
):
    graph = await create_graph(
        {
            "Foo.sol": (("Bar.sol",), ()),
            "Bar.sol": ((), ()),
            "Baz.sol": (("Bar.sol",), ()),
        }
    )
    config = solidity_config("0.8.4", optimizer=True)

    async def get_job_for_file(component, file):
        return await create_compilation_job_from_file(component, file, config)

    # Affected files of a component are compiled together.
    result = await create_compilation_jobs_from_connected_component(graph, get_job_for_file)
    assert len(result.jobs) == 1
    assert len(result.jobs[0].get_resolved_files()) == 3


@pytest.mark.asyncio
async def test_create_compilation_jobs_from_connected_component_without_bug(
    create_graph, solidity_config
):
    graph = await create_graph(
        {
            "Foo.sol": (("Bar.sol",), ()),
            "Bar.sol": ((), ()),
            "Baz.sol": (("Bar.sol",), ()),
        }
    )
    config = solidity_config("0.8.4")

    async def get_job_for_file(component, file):
        return await create_compilation_job_from_file(component, file, config)

    # Unaffected jobs with the same configuration share a single compiler run.
    result = await create_compilation_jobs_from_connected_component(graph, get_job_for_file)
    assert len(result.jobs) == 1
    job = result.jobs[0]
    assert _names(job.get_resolved_files()) == ["Bar.sol", "Baz.sol", "Foo.sol"]
    assert all(job.emits_artifacts(f) for f in job.get_resolved_files())


@pytest.mark.asyncio
async def test_create_compilation_jobs_from_connected_component_skips_empty_jobs(create_graph):
    graph = await create_graph({"Foo.sol": ((), ()), "Bar.sol": ((), ())})

    async def get_job_for_file(component, file):
        job = CompilationJob(NOT_OPTIMIZED)
        if file.source_name == "Bar.sol":
            job.add_file_to_compile(file, False)

        return job

    result = await create_compilation_jobs_from_connected_component(graph, get_job_for_file)
    assert result.jobs == []
    assert result.creation_errors == []


def test_get_input_from_compilation_job(make_resolved_file):
    job = CompilationJob(SolcConfig(version="0.8.4"))
    for name in ("contracts/B.sol", "contracts/A.sol"):
        job.add_file_to_compile(make_resolved_file(name), True)

    actual = get_input_from_compilation_job(job)
    assert actual["language"] == "Solidity"
    assert list(actual["sources"]) == ["contracts/A.sol", "contracts/B.sol"]
    assert actual["sources"]["contracts/A.sol"] == {"content": "// contracts/A.sol\n"}
    assert actual["settings"] == {
        "metadata": {"useLiteralContent": True},
        "outputSelection": DEFAULT_OUTPUT_SELECTION,
    }


def test_get_input_from_compilation_job_settings(make_resolved_file):
    output_selection = {"*": {"*": ["abi"]}}
    settings = {"optimizer": {"enabled": True, "runs": 1}, "outputSelection": output_selection}
    config = SolcConfig(version="0.8.4", settings=settings)
    job = CompilationJob(config)
    job.add_file_to_compile(make_resolved_file("A.sol"), True)

    actual = get_input_from_compilation_job(job)
    assert actual["settings"]["optimizer"] == {"enabled": True, "runs": 1}
    assert actual["settings"]["outputSelection"] == output_selection
    assert actual["settings"]["metadata"] == {"useLiteralContent": True}

    # The job's settings are not shared with the input.
    actual["settings"]["optimizer"]["runs"] = 200
    assert config.settings["optimizer"]["runs"] == 1


@pytest.mark.parametrize(
    "metadata,expected",
    [
        ({"bytecodeHash": "none"}, {"useLiteralContent": True, "bytecodeHash": "none"}),
        ({"useLiteralContent": False}, {"useLiteralContent": False}),
    ],
)
def test_get_input_from_compilation_job_metadata(make_resolved_file, metadata, expected):
    job = CompilationJob(SolcConfig(version="0.8.4", settings={"metadata": metadata}))
    job.add_file_to_compile(make_resolved_file("A.sol"), True)

    actual = get_input_from_compilation_job(job)
    assert actual["settings"]["metadata"] == expected
    assert actual["settings"]["outputSelection"] == DEFAULT_OUTPUT_SELECTION


@pytest.mark.asyncio
async def test_get_compilation_job_creation_errors_message(plan_file, solidity_config):
    config = solidity_config("0.5.5")
    files = {
        "Foo.sol": (("Bar.sol",), ("^0.5.0",)),
        "Bar.sol": ((), ("^0.6.0",)),
    }
    imports_error = await plan_file(files, config)
    no_version_error = await plan_file(files, config, source_name="Bar.sol")

    message = get_compilation_job_creation_errors_message([imports_error, no_version_error])
    assert "Foo.sol (^0.5.0) imports Bar.sol (^0.6.0)" in message
    assert "  * Bar.sol (^0.6.0)" in message
    assert "configure additional compiler versions" in message
