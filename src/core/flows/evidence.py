from typing import Iterable, Sequence

from src.core.flows.models import (
    EVIDENCE_TYPES,
    EvidenceExcess,
    EvidenceRecord,
    EvidenceRequirement,
    EvidenceShortfall,
)


def count_evidence_by_type(evidence: Iterable[EvidenceRecord]) -> dict[str, int]:
    counts = {evidence_type: 0 for evidence_type in EVIDENCE_TYPES}
    for item in evidence:
        counts[item.evidence_type] += 1
    return counts


def find_evidence_shortfalls(
    requirements: Sequence[EvidenceRequirement], counts: dict[str, int]
) -> list[EvidenceShortfall]:
    """Required requirements whose minimum is not yet met, in declaration order."""
    shortfalls: list[EvidenceShortfall] = []
    for requirement in requirements:
        if not requirement.is_required:
            continue
        actual = counts.get(requirement.type, 0)
        if actual < requirement.min_quantity:
            shortfalls.append(
                EvidenceShortfall(
                    type=requirement.type,
                    required_min=requirement.min_quantity,
                    actual=actual,
                )
            )
    return shortfalls


def find_evidence_excess(
    requirements: Sequence[EvidenceRequirement], counts: dict[str, int]
) -> list[EvidenceExcess]:
    excess: list[EvidenceExcess] = []
    for requirement in requirements:
        if requirement.max_quantity is None:
            continue
        actual = counts.get(requirement.type, 0)
        if actual > requirement.max_quantity:
            excess.append(
                EvidenceExcess(
                    type=requirement.type,
                    allowed_max=requirement.max_quantity,
                    actual=actual,
                )
            )
    return excess
