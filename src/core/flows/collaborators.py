from typing import Any, Iterable, Mapping, Protocol, Union

from src.core.flows.models import MovementCandidate

SuggestionResult = Iterable[Union[MovementCandidate, Mapping[str, Any]]]


class EvidenceBlobStore(Protocol):
    def resolve_url(self, reference_id: str) -> str: ...


class SuggestionProvider(Protocol):
    def __call__(self, flow_instance_id: str, context: dict[str, Any]) -> SuggestionResult: ...


def no_suggestions(flow_instance_id: str, context: dict[str, Any]) -> SuggestionResult:
    return []
