"""Turn per-run tempId references into durable decision references.

Durable ids are assigned to every decision before any ``depends_on`` entry is
read, so a reference resolves the same way regardless of where the target
sits in the list.
"""

import re
from typing import Callable

from models.postgres import generate_uuid
from models.schemas import DependencyEdge, ExtractedDecision, ResolvedDecision, ResolvedGraph
from utils.logging import get_logger

logger = get_logger(__name__)

DECISION_REF_PREFIX = "decision:"

# Cross-conversation references the model may legitimately emit
EXTERNAL_REF_PATTERN = re.compile(r"^conversation:[^/\s]+/decision:[^/\s]+$")


def decision_ref(decision_id: str) -> str:
    return f"{DECISION_REF_PREFIX}{decision_id}"


def resolve(
    extracted: list[ExtractedDecision],
    id_factory: Callable[[], str] = generate_uuid,
) -> ResolvedGraph:
    """Assign durable ids and rewrite dependencies into edges.

    A ``depends_on`` entry naming a tempId from this batch becomes
    ``decision:<durable id>``. Anything else is kept verbatim; entries that
    are not external conversation references are also reported in
    ``unresolved_refs``. Self-references and cycles are preserved.
    """
    id_map: dict[str, str] = {}
    decisions: list[ResolvedDecision] = []
    for decision in extracted:
        durable_id = id_factory()
        id_map[decision.temp_id] = durable_id
        decisions.append(ResolvedDecision(id=durable_id, decision=decision))

    edges: list[DependencyEdge] = []
    unresolved: list[str] = []
    for resolved in decisions:
        for ref in resolved.decision.depends_on:
            target = id_map.get(ref)
            if target is not None:
                to_ref = decision_ref(target)
            else:
                to_ref = ref
                if not EXTERNAL_REF_PATTERN.match(ref):
                    unresolved.append(ref)
                    logger.warning(
                        f"Unmatched dependency {ref!r} from {resolved.decision.temp_id}; "
                        "keeping it as an opaque reference"
                    )
            edges.append(DependencyEdge(from_decision_id=resolved.id, to_decision_ref=to_ref))

    return ResolvedGraph(decisions=decisions, edges=edges, unresolved_refs=unresolved)
