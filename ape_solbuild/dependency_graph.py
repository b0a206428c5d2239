import asyncio
from collections.abc import Iterable
from typing import Awaitable, TypeVar

from ape.logging import logger

from ape_solbuild._models import ResolvedFile, TransitiveDependency
from ape_solbuild.resolver import Resolver


T = TypeVar("T")


async def _gather_or_cancel(*aws: Awaitable[T]) -> list[T]:
    # Unlike a bare gather, a failure cancels the awaitables still running.
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()

        raise


class DependencyGraph:
    """
    The files of a build and their import edges.

    Files are stored once, by source name, and edges are kept as sets of
    source names. A graph is complete once created and never changes;
    connected components are new graphs sharing the same file objects.
    """

    def __init__(self):
        self._resolved_files: dict[str, ResolvedFile] = {}
        self._dependencies: dict[str, dict[str, None]] = {}
        self._visited: set[str] = set()

    def __contains__(self, file: ResolvedFile) -> bool:
        return self.has(file)

    def __len__(self) -> int:
        return len(self._resolved_files)

    def __repr__(self) -> str:
        return f"<DependencyGraph files={len(self)}>"

    @classmethod
    async def create_from_resolved_files(
        cls, resolver: Resolver, resolved_files: Iterable[ResolvedFile]
    ) -> "DependencyGraph":
        """
        Build the graph of everything reachable from the given entry points.

        Import cycles are allowed. The first resolution error aborts
        the construction and cancels the resolutions still in progress.

        Args:
            resolver (:class:`~ape_solbuild.resolver.Resolver`): Resolves every import.
            resolved_files (Iterable[:class:`~ape_solbuild._models.ResolvedFile`]):
              The entry points.

        Returns:
            :class:`~ape_solbuild.dependency_graph.DependencyGraph`
        """
        graph = cls()
        await _gather_or_cancel(
            *(graph._add_dependencies_from(resolver, f) for f in resolved_files)
        )
        logger.debug(f"Created dependency graph with {len(graph)} file(s).")
        return graph

    def entries(self) -> list[tuple[ResolvedFile, list[ResolvedFile]]]:
        return [(file, self.get_dependencies(file)) for file in self._resolved_files.values()]

    def get_resolved_files(self) -> list[ResolvedFile]:
        return list(self._resolved_files.values())

    def has(self, file: ResolvedFile) -> bool:
        return file.source_name in self._resolved_files

    def is_empty(self) -> bool:
        return len(self._resolved_files) == 0

    def get_dependencies(self, file: ResolvedFile) -> list[ResolvedFile]:
        dependencies = self._dependencies.get(file.source_name, {})
        return [self._resolved_files[name] for name in dependencies]

    def get_transitive_dependencies(self, file: ResolvedFile) -> list[TransitiveDependency]:
        """
        Every file ``file`` needs to compile, each listed once along with
        the chain of imports through which it was first reached.

        Args:
            file (:class:`~ape_solbuild._models.ResolvedFile`): The importing file.

        Returns:
            list[:class:`~ape_solbuild._models.TransitiveDependency`]
        """
        result: list[TransitiveDependency] = []
        visited: set[str] = {file.source_name}

        # Depth-first, pushing children in reverse so they pop in import order.
        stack: list[tuple[ResolvedFile, list[ResolvedFile]]] = [
            (dependency, []) for dependency in reversed(self.get_dependencies(file))
        ]
        while stack:
            dependency, path = stack.pop()
            if dependency.source_name in visited:
                continue

            visited.add(dependency.source_name)
            result.append(TransitiveDependency(dependency=dependency, path=path))
            stack.extend(
                (child, [*path, dependency])
                for child in reversed(self.get_dependencies(dependency))
                if child.source_name not in visited
            )

        return result

    def get_connected_components(self) -> list["DependencyGraph"]:
        """
        Split the graph into groups of files connected by imports, in
        either direction. Every file belongs to exactly one group and no
        import crosses groups.

        Returns:
            list[:class:`~ape_solbuild.dependency_graph.DependencyGraph`]
        """
        undirected: dict[str, set[str]] = {name: set() for name in self._resolved_files}
        for source_name, dependencies in self._dependencies.items():
            for dependency in dependencies:
                undirected[source_name].add(dependency)
                undirected[dependency].add(source_name)

        components: list[list[str]] = []
        visited: set[str] = set()
        for node in undirected:
            if node in visited:
                continue

            visited.add(node)
            component = [node]
            stack = [n for n in undirected[node] if n not in visited]
            while stack:
                current = stack.pop()
                if current in visited:
                    continue

                visited.add(current)
                component.append(current)
                stack.extend(n for n in undirected[current] if n not in visited)

            components.append(component)

        logger.debug(f"Found {len(components)} connected component(s).")
        return [self._subgraph(component) for component in components]

    def _subgraph(self, source_names: Iterable[str]) -> "DependencyGraph":
        graph = DependencyGraph()
        for source_name in source_names:
            graph._resolved_files[source_name] = self._resolved_files[source_name]
            graph._dependencies[source_name] = {**self._dependencies.get(source_name, {})}
            graph._visited.add(source_name)

        return graph

    async def _add_dependencies_from(self, resolver: Resolver, file: ResolvedFile):
        # Checked and marked before awaiting anything, so concurrent
        # tasks never process the same file twice.
        if file.source_name in self._visited:
            return

        self._visited.add(file.source_name)
        self._resolved_files[file.source_name] = file
        dependencies = await _gather_or_cancel(
            *(resolver.resolve_import(file, imported) for imported in file.content.imports)
        )
        self._dependencies[file.source_name] = dict.fromkeys(d.source_name for d in dependencies)
        await _gather_or_cancel(*(self._add_dependencies_from(resolver, d) for d in dependencies))
