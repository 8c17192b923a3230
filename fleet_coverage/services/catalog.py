"""
Provider catalog: read-only view of active insurance providers and their rules.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, FrozenSet


@dataclass(frozen=True)
class ProviderRules:
    """Eligibility rules of one provider, detached from the database row."""
    provider_id: str
    name: str
    type: str
    is_active: bool
    value_min: Optional[float] = None
    value_max: Optional[float] = None
    excluded_makes: FrozenSet[str] = frozenset()
    excluded_models: FrozenSet[str] = frozenset()

    @classmethod
    def from_model(cls, provider) -> "ProviderRules":
        return cls(
            provider_id=provider.id,
            name=provider.name,
            type=provider.type,
            is_active=bool(provider.is_active),
            value_min=provider.vehicle_value_min,
            value_max=provider.vehicle_value_max,
            excluded_makes=frozenset(provider.excluded_makes),
            excluded_models=frozenset(provider.excluded_models),
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.provider_id,
            "name": self.name,
            "type": self.type,
            "vehicle_value_min": self.value_min,
            "vehicle_value_max": self.value_max,
            "excluded_makes": sorted(self.excluded_makes),
            "excluded_models": sorted(self.excluded_models),
        }


class ProviderCatalog:
    """In-memory index of active providers keyed by id."""

    def __init__(self, providers: List[ProviderRules]):
        # Inactive providers never enter the catalog
        self._providers: Dict[str, ProviderRules] = {
            p.provider_id: p for p in providers if p.is_active
        }

    def get(self, provider_id: Optional[str]) -> Optional[ProviderRules]:
        if provider_id is None:
            return None
        return self._providers.get(provider_id)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __iter__(self) -> Iterator[ProviderRules]:
        return iter(sorted(self._providers.values(), key=lambda p: p.provider_id))

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def active_ids(self) -> List[str]:
        return sorted(self._providers)


def load_catalog(session) -> ProviderCatalog:
    """Load all active providers in a single query."""
    from fleet_coverage.models import InsuranceProvider

    providers = session.query(InsuranceProvider).filter(
        InsuranceProvider.is_active == True  # noqa: E712
    ).all()
    return ProviderCatalog([ProviderRules.from_model(p) for p in providers])
