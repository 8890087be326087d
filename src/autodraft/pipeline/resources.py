"""Resource lifecycle: inherit, evolve, propagate.

After a node's text settles, the resources it touches are kept in step
with it:

1. inherit: pick the relevant subset of the parent's resources;
2. evolve: extract new entities and state changes from the node's text;
3. propagate: new resources are associated with the node, its parent, and
   the ROOT when the parent sits at the top of the hierarchy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from autodraft.models.node import NodeType, Phase
from autodraft.models.responses import ResourceSelection, WorldStateAnalysis
from autodraft.observability.logging import get_logger
from autodraft.pipeline.context import format_resources

if TYPE_CHECKING:
    from autodraft.graph.graph import StoryGraph
    from autodraft.graph.progress import ProgressTracker
    from autodraft.models.node import Node
    from autodraft.observability.run_log import RunLog
    from autodraft.pipeline.llm_helper import LLMHelper

log = get_logger(__name__)

MIN_EVOLVE_CHARS = 50
EXTRACT_TEXT_CHARS = 3000


def _resource_key(node_type: NodeType | str, title: str) -> tuple[str, str]:
    return str(node_type), title.strip().casefold()


class ResourceLifecycleManager:
    """Keeps node associations and the resource pool in step with the story."""

    def __init__(
        self,
        graph: StoryGraph,
        llm: LLMHelper,
        tracker: ProgressTracker,
        *,
        run_log: RunLog | None = None,
    ) -> None:
        self._graph = graph
        self._llm = llm
        self._tracker = tracker
        self._run_log = run_log

    async def sync(self, node_id: str) -> list[str]:
        """Run inherit, evolve and propagate for one node, once per run.

        Returns:
            Ids of resources created for this node (empty if already synced).
        """
        if self._tracker.is_done(node_id, Phase.RESOURCE_SYNCED):
            return []
        await self._tracker.begin(node_id, Phase.RESOURCE_SYNCED)

        await self.inherit(node_id)
        created = await self.evolve(node_id)
        if created:
            await self.propagate(node_id, created)

        await self._tracker.mark_done(node_id, Phase.RESOURCE_SYNCED)
        return created

    async def inherit(self, node_id: str) -> list[str]:
        """Associate the subset of the parent's resources relevant to this node."""
        node = self._graph.require(node_id)
        parent = self._graph.get_node(node.parent_id) if node.parent_id else None
        if parent is None or not parent.associations:
            return []

        available = self._graph.resources(parent.associations)
        if not available:
            return []
        selection = await self._llm.generate_structured(
            "resource_associate",
            {
                "text": node.effective_text or node.summary or node.title,
                "resources": format_resources(available, brief=True),
            },
            ResourceSelection,
        )
        allowed = {r.id for r in available}
        selected = [i for i in selection.selected_ids if i in allowed]
        dropped = len(selection.selected_ids) - len(selected)
        if dropped:
            log.debug("selection_filtered", node_id=node_id, dropped=dropped)
        return await self._graph.associate(node_id, selected)

    async def evolve(self, node_id: str) -> list[str]:
        """Create, update and link resources from the node's text.

        Returns:
            Ids of newly created resource nodes.
        """
        node = self._graph.require(node_id)
        text = node.effective_text or node.summary
        if len(text) < MIN_EVOLVE_CHARS:
            return []

        known = self._known_resources(node)
        analysis = await self._llm.generate_structured(
            "resource_extract",
            {"text": text[:EXTRACT_TEXT_CHARS], "resources": format_resources(known)},
            WorldStateAnalysis,
        )

        pool = {_resource_key(r.type, r.title): r.id for r in self._graph.resources()}
        created: list[str] = []
        reused: list[str] = []
        for new in analysis.new_resources:
            key = _resource_key(new.type, new.title)
            if not new.title.strip():
                continue
            if key in pool:
                reused.append(pool[key])
                continue
            (new_id,) = await self._graph.add_resources([(new.type, new.title, new.summary)])
            pool[key] = new_id
            created.append(new_id)
            self._info(f"[world] new {new.type}: {new.title}")

        resource_ids = {r.id for r in self._graph.resources()}
        for update in analysis.updates:
            if update.id not in resource_ids or not update.new_summary:
                continue
            await self._graph.update_node(update.id, summary=update.new_summary)
            resource = self._graph.require(update.id)
            self._info(f"[world] {resource.title}: {update.change_log or 'updated'}")

        mentioned = [i for i in analysis.mentioned_ids if i in resource_ids]
        await self._graph.associate(node_id, [*created, *reused, *mentioned])
        log.info(
            "resources_evolved",
            node_id=node_id,
            created=len(created),
            updated=len(analysis.updates),
            mentioned=len(mentioned),
        )
        return created

    async def propagate(self, node_id: str, resource_ids: list[str]) -> None:
        """Union *resource_ids* into the node, its parent and (near the top) ROOT."""
        node = self._graph.require(node_id)
        await self._graph.associate(node_id, resource_ids)
        if not node.parent_id:
            return
        parent = self._graph.get_node(node.parent_id)
        if parent is None:
            return
        await self._graph.associate(parent.id, resource_ids)

        root = self._graph.root()
        if parent.id != root.id and parent.parent_id == root.id:
            await self._graph.associate(root.id, resource_ids)

    def _known_resources(self, node: Node) -> list[Node]:
        if node.associations:
            return self._graph.resources(node.associations)
        return self._graph.resources()

    def _info(self, message: str) -> None:
        if self._run_log is not None:
            self._run_log.info(message)
