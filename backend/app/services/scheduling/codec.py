from __future__ import annotations

from collections.abc import Iterable

from app.core.exceptions import EncodingError
from app.services.scheduling.domain import (
    Assignment,
    BlockRequest,
    Chromosome,
    SubjectBlock,
)


class ChromosomeCodec:
    """Positional mapping between assignment sets and gene tuples.

    Gene slots are indexed by ``(subject_block_id, component)``. Members of a
    parallel group resolve to their leader's slot so one gene drives every
    linked subject.
    """

    def __init__(self, requests: Iterable[BlockRequest], blocks: Iterable[SubjectBlock]) -> None:
        self.requests = tuple(requests)
        self.slot_keys = tuple(request.key for request in self.requests)
        self.index_by_key: dict[tuple[str, str], int] = {}
        for index, request in enumerate(self.requests):
            for block_id in request.block_ids:
                self.index_by_key.setdefault((block_id, request.component), index)

        missing = [
            f"{block.subject_code} block {block.block_number} ({component})"
            for block in blocks
            for component in block.components
            if (block.id, component) not in self.index_by_key
        ]
        if missing:
            raise EncodingError(
                "Subject blocks have no gene slot: " + ", ".join(missing),
                details={"missing": missing},
            )

    def __len__(self) -> int:
        return len(self.requests)

    def slot_index(self, block_id: str, component: str) -> int:
        try:
            return self.index_by_key[(block_id, component)]
        except KeyError as exc:
            raise EncodingError(f"No gene slot for block {block_id} ({component})") from exc

    def encode(self, assignments: Iterable[Assignment]) -> Chromosome:
        genes = [None] * len(self.requests)
        for assignment in assignments:
            index = self.slot_index(assignment.block_id, assignment.component)
            if genes[index] is not None:
                raise EncodingError(
                    f"Duplicate assignment for gene slot {self.slot_keys[index]}",
                    details={"block_id": assignment.block_id, "component": assignment.component},
                )
            genes[index] = assignment.placement
        missing = [self.slot_keys[index] for index, gene in enumerate(genes) if gene is None]
        if missing:
            raise EncodingError(
                f"Assignment set is missing {len(missing)} gene slot(s)",
                details={"missing": [list(key) for key in missing]},
            )
        return tuple(genes)

    def decode(self, chromosome: Chromosome) -> tuple[Assignment, ...]:
        self.check(chromosome)
        return tuple(
            Assignment.from_placement(key[0], key[1], placement)
            for key, placement in zip(self.slot_keys, chromosome)
        )

    def check(self, chromosome: Chromosome) -> None:
        if len(chromosome) != len(self.requests):
            raise EncodingError(
                f"Chromosome has {len(chromosome)} genes, expected {len(self.requests)}",
            )
