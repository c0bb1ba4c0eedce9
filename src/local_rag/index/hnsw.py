"""
HNSW Index - layered proximity graph for approximate nearest neighbor search.

Nodes live in an arena (a list of _Node structs) and the graph refers to them
by integer slot. String ids exist only at the boundary, through `_slots`.
Freed slots are recycled; each node also carries an insertion sequence number
so equal distances always rank in insertion order.

Insertion:
1. Draw a level with repeated fair coin flips, capped at max_level
2. Greedy (ef=1) descent from the entry point down to level + 1
3. On each level from min(level, entry level) down to 0: best-first search
   with ef_construction, keep the M nearest as neighbors, add back-edges and
   prune any neighbor that now has more than M edges
4. Promote the new node to entry point if its level is the highest

Search: greedy descent to layer 1, then best-first search with
max(ef_search, k) on layer 0, return the k nearest.

INTERVIEW TALKING POINT:
------------------------
"Neighbor selection is plain truncation to the M nearest, not the diversity
heuristic from the HNSW paper, and deleting the entry point just promotes
another top-level node without repairing the graph. Both are deliberate
simplifications. Recall at our scale (thousands of chunks) stays effectively
exact, and the store is the source of truth, so a rebuild is always available
if heavy deletion churn ever degrades the graph."
"""

from __future__ import annotations

import heapq
import logging
import random
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from local_rag.config import HNSWConfig
from local_rag.core.errors import ValidationError
from local_rag.core.protocols import SearchHit
from local_rag.index.distance import batch_cosine_distance, vector_norm

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class _Node:
    id: str
    vector: np.ndarray
    norm: float
    level: int
    seq: int
    neighbors: list[list[int]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class HNSWIndex:
    """
    In-memory HNSW index over cosine distance.

    Not safe under concurrent mutation: callers serialize insert/remove
    (RAGEngine does this with its structural lock).

    Args:
        dimension: Length of every indexed vector
        m: Max neighbors per node per level
        ef_construction: Candidate list width while inserting
        ef_search: Candidate list width while querying
        max_level: Hard cap on layers
        seed: Seed for level draws, for reproducible graphs
        rng: Explicit random source (overrides seed)
    """

    def __init__(
        self,
        dimension: int,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 50,
        max_level: int = 8,
        seed: int | None = None,
        rng: random.Random | None = None,
    ):
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        if m < 1:
            raise ValueError(f"m must be at least 1, got {m}")
        self.dimension = dimension
        self.m = m
        self.ef_construction = max(1, ef_construction)
        self.ef_search = max(1, ef_search)
        self.max_level = max(0, max_level)
        self._rng = rng or random.Random(seed)

        self._nodes: list[_Node | None] = []
        self._free: list[int] = []
        self._slots: dict[str, int] = {}
        self._levels: dict[int, set[int]] = {}
        self._entry: int | None = None
        self._seq = 0

    @classmethod
    def from_config(cls, dimension: int, config: HNSWConfig) -> "HNSWIndex":
        return cls(
            dimension,
            m=config.m,
            ef_construction=config.ef_construction,
            ef_search=config.ef_search,
            max_level=config.max_level,
            seed=config.seed,
        )

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._slots

    def size(self) -> int:
        return len(self._slots)

    def ids(self) -> list[str]:
        """Indexed ids in insertion order."""
        nodes = [self._nodes[slot] for slot in self._slots.values()]
        return [node.id for node in sorted(nodes, key=lambda n: n.seq)]

    @property
    def entry_point(self) -> str | None:
        if self._entry is None:
            return None
        return self._nodes[self._entry].id

    @property
    def top_level(self) -> int:
        """Highest populated level, -1 when empty."""
        return max(self._levels) if self._levels else -1

    def level_of(self, doc_id: str) -> int:
        return self._node(doc_id).level

    def neighbors(self, doc_id: str, level: int = 0) -> list[str]:
        """Adjacency list of a node at a level, as ids."""
        node = self._node(doc_id)
        if level > node.level:
            return []
        return [self._nodes[slot].id for slot in node.neighbors[level]]

    def level_members(self, level: int) -> set[str]:
        """Ids of every node whose level is >= `level`."""
        return {self._nodes[slot].id for slot in self._levels.get(level, ())}

    def get_vector(self, doc_id: str) -> np.ndarray:
        return self._node(doc_id).vector

    def get_metadata(self, doc_id: str) -> dict[str, Any]:
        return dict(self._node(doc_id).metadata)

    def _node(self, doc_id: str) -> _Node:
        slot = self._slots.get(doc_id)
        if slot is None:
            raise KeyError(doc_id)
        return self._nodes[slot]

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _check_vector(self, vector: Any, what: str) -> np.ndarray:
        try:
            array = np.asarray(vector, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{what} is not numeric: {e}") from e
        if array.ndim != 1 or array.shape[0] != self.dimension:
            raise ValidationError(
                f"{what} must have dimension {self.dimension}, got shape {array.shape}"
            )
        if not np.all(np.isfinite(array)):
            raise ValidationError(f"{what} contains non-finite values")
        return array

    def _random_level(self) -> int:
        level = 0
        while self._rng.random() < 0.5 and level < self.max_level:
            level += 1
        return level

    def _distances(self, query: np.ndarray, query_norm: float, slots: list[int]) -> np.ndarray:
        nodes = [self._nodes[slot] for slot in slots]
        vectors = np.stack([node.vector for node in nodes])
        norms = np.array([node.norm for node in nodes], dtype=np.float32)
        return batch_cosine_distance(query, query_norm, vectors, norms)

    def _search_layer(
        self,
        query: np.ndarray,
        query_norm: float,
        entry: int,
        level: int,
        ef: int,
    ) -> list[tuple[float, int, int]]:
        """Best-first search on one level.

        Returns up to `ef` (distance, seq, slot) triples sorted nearest first.
        """
        entry_node = self._nodes[entry]
        entry_dist = float(self._distances(query, query_norm, [entry])[0])

        visited = {entry}
        candidates = [(entry_dist, entry_node.seq, entry)]
        # Max-heap of the best results found so far
        results = [(-entry_dist, -entry_node.seq, entry)]

        while candidates:
            dist, _, slot = heapq.heappop(candidates)
            if len(results) >= ef and dist > -results[0][0]:
                break

            node = self._nodes[slot]
            if level > node.level:
                continue
            fresh = [nb for nb in node.neighbors[level] if nb not in visited]
            if not fresh:
                continue
            visited.update(fresh)

            for nb, nb_dist in zip(fresh, self._distances(query, query_norm, fresh)):
                nb_dist = float(nb_dist)
                if len(results) < ef or nb_dist < -results[0][0]:
                    seq = self._nodes[nb].seq
                    heapq.heappush(candidates, (nb_dist, seq, nb))
                    heapq.heappush(results, (-nb_dist, -seq, nb))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted((-neg_dist, -neg_seq, slot) for neg_dist, neg_seq, slot in results)

    def _prune(self, slot: int, level: int) -> None:
        """Cut a node's adjacency at `level` back to its M nearest."""
        node = self._nodes[slot]
        adjacency = node.neighbors[level]
        dists = self._distances(node.vector, node.norm, adjacency)
        ranked = sorted(
            zip(dists.tolist(), (self._nodes[nb].seq for nb in adjacency), adjacency)
        )
        node.neighbors[level] = [nb for _, _, nb in ranked[: self.m]]

    def _alloc(self, node: _Node) -> int:
        if self._free:
            slot = self._free.pop()
            self._nodes[slot] = node
        else:
            slot = len(self._nodes)
            self._nodes.append(node)
        self._slots[node.id] = slot
        return slot

    def _register_levels(self, slot: int, level: int) -> None:
        for lvl in range(level + 1):
            self._levels.setdefault(lvl, set()).add(slot)

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    def insert(
        self,
        doc_id: str,
        vector: Any,
        metadata: dict[str, Any] | None = None,
        level: int | None = None,
    ) -> None:
        """Insert a vector. Re-inserting an existing id replaces it."""
        array = self._check_vector(vector, "vector")
        if doc_id in self._slots:
            self.remove(doc_id)

        if level is None:
            level = self._random_level()
        else:
            level = max(0, min(level, self.max_level))

        node = _Node(
            id=doc_id,
            vector=array.copy(),
            norm=vector_norm(array),
            level=level,
            seq=self._seq,
            neighbors=[[] for _ in range(level + 1)],
            metadata=dict(metadata or {}),
        )
        self._seq += 1
        slot = self._alloc(node)

        if self._entry is None:
            self._register_levels(slot, level)
            self._entry = slot
            return

        entry = self._entry
        entry_level = self._nodes[entry].level

        for lvl in range(entry_level, level, -1):
            entry = self._search_layer(node.vector, node.norm, entry, lvl, 1)[0][2]

        for lvl in range(min(level, entry_level), -1, -1):
            found = self._search_layer(node.vector, node.norm, entry, lvl, self.ef_construction)
            selected = [s for _, _, s in found if s != slot][: self.m]
            node.neighbors[lvl] = list(selected)

            for nb in selected:
                nb_node = self._nodes[nb]
                nb_node.neighbors[lvl].append(slot)
                if len(nb_node.neighbors[lvl]) > self.m:
                    self._prune(nb, lvl)

            if selected:
                entry = selected[0]

        self._register_levels(slot, level)
        if level > entry_level:
            self._entry = slot

    def remove(self, doc_id: str) -> bool:
        """Remove a node and every edge pointing at it. False if unknown."""
        slot = self._slots.pop(doc_id, None)
        if slot is None:
            return False

        node = self._nodes[slot]
        for lvl in range(node.level + 1):
            members = self._levels.get(lvl)
            if members is None:
                continue
            members.discard(slot)
            for other in members:
                adjacency = self._nodes[other].neighbors[lvl]
                if slot in adjacency:
                    adjacency.remove(slot)
            if not members:
                del self._levels[lvl]

        self._nodes[slot] = None
        self._free.append(slot)

        if self._entry == slot:
            self._entry = self._pick_entry()
        return True

    def _pick_entry(self) -> int | None:
        """Any node on the highest populated level (earliest inserted)."""
        if not self._levels:
            return None
        top = self._levels[max(self._levels)]
        return min(top, key=lambda s: self._nodes[s].seq)

    def clear(self) -> None:
        self._nodes.clear()
        self._free.clear()
        self._slots.clear()
        self._levels.clear()
        self._entry = None

    # ------------------------------------------------------------------ #
    # Query
    # ------------------------------------------------------------------ #

    def search(self, query: Any, k: int = 5, ef: int | None = None) -> list[SearchHit]:
        """Approximate k nearest neighbors, most similar first."""
        if k <= 0:
            raise ValidationError(f"k must be positive, got {k}")
        array = self._check_vector(query, "query")
        if self._entry is None:
            return []

        query_norm = vector_norm(array)
        entry = self._entry
        for lvl in range(self._nodes[entry].level, 0, -1):
            entry = self._search_layer(array, query_norm, entry, lvl, 1)[0][2]

        width = max(ef or self.ef_search, k)
        found = self._search_layer(array, query_norm, entry, 0, width)

        return [
            SearchHit(
                id=self._nodes[slot].id,
                similarity=1.0 - dist,
                metadata=dict(self._nodes[slot].metadata),
            )
            for dist, _, slot in found[:k]
        ]

    # ------------------------------------------------------------------ #
    # Snapshots
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        """Serialize the full graph to JSON-compatible data."""
        ordered = sorted(
            (self._nodes[slot] for slot in self._slots.values()), key=lambda n: n.seq
        )
        return {
            "version": SNAPSHOT_VERSION,
            "dimension": self.dimension,
            "m": self.m,
            "ef_construction": self.ef_construction,
            "ef_search": self.ef_search,
            "max_level": self.max_level,
            "entry_point": self.entry_point,
            "nodes": [
                {
                    "id": node.id,
                    "vector": node.vector.tolist(),
                    "level": node.level,
                    "neighbors": [
                        [self._nodes[nb].id for nb in adjacency]
                        for adjacency in node.neighbors
                    ],
                    "metadata": node.metadata,
                }
                for node in ordered
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], seed: int | None = None) -> "HNSWIndex":
        """Rebuild an index from to_dict() output without re-running insertion."""
        if data.get("version") != SNAPSHOT_VERSION:
            raise ValidationError(f"unsupported snapshot version: {data.get('version')}")

        index = cls(
            data["dimension"],
            m=data["m"],
            ef_construction=data["ef_construction"],
            ef_search=data["ef_search"],
            max_level=data["max_level"],
            seed=seed,
        )

        for raw in data["nodes"]:
            array = index._check_vector(raw["vector"], f"vector of '{raw['id']}'")
            level = int(raw["level"])
            node = _Node(
                id=raw["id"],
                vector=array,
                norm=vector_norm(array),
                level=level,
                seq=index._seq,
                neighbors=[[] for _ in range(level + 1)],
                metadata=dict(raw.get("metadata") or {}),
            )
            index._seq += 1
            slot = index._alloc(node)
            index._register_levels(slot, level)

        for raw in data["nodes"]:
            node = index._nodes[index._slots[raw["id"]]]
            for lvl, adjacency in enumerate(raw["neighbors"][: node.level + 1]):
                try:
                    node.neighbors[lvl] = [index._slots[nb] for nb in adjacency]
                except KeyError as e:
                    raise ValidationError(f"snapshot references unknown node {e}") from e

        entry_id = data.get("entry_point")
        if entry_id is not None:
            if entry_id not in index._slots:
                raise ValidationError(f"snapshot entry point '{entry_id}' is not a node")
            index._entry = index._slots[entry_id]
        elif index._slots:
            index._entry = index._pick_entry()

        logger.debug(f"Restored HNSW snapshot with {len(index)} nodes")
        return index
