"""
Coverage resolver: decides whether a vehicle is insured, by what, and why not.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple
from enum import Enum
import logging

from fleet_coverage.services.catalog import ProviderCatalog, ProviderRules, load_catalog

logger = logging.getLogger("fleet_coverage")

DEFAULT_VALUE_FACTOR = 0.15

WARNING_NO_PROVIDER = "Operator has no assigned provider"
WARNING_NO_MATCH = "Vehicle does not match any provider rules"


class CoverageSource(str, Enum):
    PROVIDER = "PROVIDER"
    OVERRIDE = "OVERRIDE"
    NONE = "NONE"


@dataclass(frozen=True)
class CoverageVerdict:
    """Outcome of resolving coverage for one vehicle."""
    has_coverage: bool
    source: CoverageSource
    provider: Optional[ProviderRules] = None
    warnings: List[str] = field(default_factory=list)
    eligible_providers: List[ProviderRules] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_coverage": self.has_coverage,
            "source": self.source.value,
            "provider": self.provider.to_dict() if self.provider else None,
            "warnings": list(self.warnings),
            "eligible_providers": [p.to_dict() for p in self.eligible_providers],
        }


def estimate_vehicle_value(vehicle, factor: float = DEFAULT_VALUE_FACTOR) -> float:
    """
    Value estimate used for eligibility matching.

    Formula when no stored estimate exists: daily_rate * 365 * factor
    """
    if vehicle.estimated_value is not None:
        return float(vehicle.estimated_value)
    return float(vehicle.daily_rate or 0) * 365 * factor


def check_provider_rules(
    value: float,
    make: str,
    model: str,
    rules: ProviderRules
) -> List[str]:
    """
    Evaluate one provider's rules against a vehicle.

    Bounds are inclusive; make/model exclusions are exact, case-sensitive.

    Returns:
        List of warnings, empty when the vehicle matches
    """
    warnings = []

    if rules.value_min is not None and value < rules.value_min:
        warnings.append(
            f"Vehicle value (${value:.0f}) below provider minimum (${rules.value_min:.0f})"
        )
    if rules.value_max is not None and value > rules.value_max:
        warnings.append(
            f"Vehicle value (${value:.0f}) above provider maximum (${rules.value_max:.0f})"
        )
    if make in rules.excluded_makes:
        warnings.append(f"Make {make} excluded by provider")
    if model in rules.excluded_models:
        warnings.append(f"Model {model} excluded by provider")

    return warnings


def find_eligible_providers(
    value: float,
    make: str,
    model: str,
    catalog: ProviderCatalog
) -> List[ProviderRules]:
    """All active providers that would cover the vehicle if assigned."""
    return [
        rules for rules in catalog
        if not check_provider_rules(value, make, model, rules)
    ]


def resolve_coverage(
    vehicle,
    host_provider: Optional[ProviderRules],
    catalog: ProviderCatalog,
    override=None,
    value_factor: float = DEFAULT_VALUE_FACTOR
) -> CoverageVerdict:
    """
    Resolve coverage for one vehicle. Pure: every input is passed in.

    Precedence (first match wins):
    1. Override present -> covered by the override's provider
    2. Host's assigned, active provider accepts the vehicle -> covered
    3. Otherwise not covered; eligible providers listed for recommendations

    Args:
        vehicle: Vehicle (make, model, estimated_value, daily_rate)
        host_provider: Rules of the provider assigned to the vehicle's host
        catalog: Active provider catalog
        override: Coverage override for this vehicle, if any
        value_factor: Daily-rate factor for the value estimate

    Returns:
        CoverageVerdict
    """
    if override is not None:
        override_provider = catalog.get(override.provider_id)
        if override_provider is None:
            # Overrides stand even when their provider is no longer active
            override_provider = ProviderRules(
                provider_id=override.provider_id,
                name=override.provider_id,
                type="OVERRIDE",
                is_active=False,
            )
        return CoverageVerdict(
            has_coverage=True,
            source=CoverageSource.OVERRIDE,
            provider=override_provider,
        )

    value = estimate_vehicle_value(vehicle, value_factor)
    warnings: List[str] = []

    assigned = None
    if host_provider is not None:
        if host_provider.is_active and host_provider.provider_id in catalog:
            assigned = host_provider
        else:
            warnings.append(f"Assigned provider {host_provider.name} is inactive")

    if assigned is not None:
        rule_warnings = check_provider_rules(value, vehicle.make, vehicle.model, assigned)
        if not rule_warnings:
            return CoverageVerdict(
                has_coverage=True,
                source=CoverageSource.PROVIDER,
                provider=assigned,
            )
        warnings.extend(rule_warnings)

    eligible = find_eligible_providers(value, vehicle.make, vehicle.model, catalog)

    if assigned is None:
        warnings.append(WARNING_NO_PROVIDER)
    elif eligible:
        warnings.append(WARNING_NO_MATCH)

    return CoverageVerdict(
        has_coverage=False,
        source=CoverageSource.NONE,
        warnings=warnings,
        eligible_providers=eligible,
    )


def _rules_for(provider_id: Optional[str], providers_by_id: Dict[str, Any]) -> Optional[ProviderRules]:
    provider = providers_by_id.get(provider_id) if provider_id else None
    return ProviderRules.from_model(provider) if provider else None


def _vehicle_entry(vehicle, verdict: CoverageVerdict, value: float) -> Dict[str, Any]:
    return {
        "vehicle_id": vehicle.id,
        "make": vehicle.make,
        "model": vehicle.model,
        "year": vehicle.year,
        "estimated_value": round(value, 2),
        "is_active": vehicle.is_active,
        "coverage": verdict.to_dict(),
    }


def get_host_coverage(
    host_id: str,
    db_session,
    value_factor: float = DEFAULT_VALUE_FACTOR
) -> Dict[str, Any]:
    """
    Coverage of every vehicle owned by one host.

    Uses one query per entity type, never one per vehicle.

    Args:
        host_id: Host ID
        db_session: Database session
        value_factor: Daily-rate factor for the value estimate

    Returns:
        Host coverage summary with per-vehicle verdicts
    """
    from fleet_coverage.models import Host, Vehicle, CoverageOverride, InsuranceProvider
    from fleet_coverage.exceptions import NotFoundError

    host = db_session.get(Host, host_id)
    if not host:
        raise NotFoundError(f"Host {host_id} not found", details={"host_id": host_id})

    catalog = load_catalog(db_session)
    providers_by_id = {}
    if host.insurance_provider_id:
        provider = db_session.get(InsuranceProvider, host.insurance_provider_id)
        if provider:
            providers_by_id[provider.id] = provider
    host_provider = _rules_for(host.insurance_provider_id, providers_by_id)

    vehicles = db_session.query(Vehicle).filter(Vehicle.host_id == host_id).order_by(Vehicle.id).all()
    vehicle_ids = [v.id for v in vehicles]
    overrides = {}
    if vehicle_ids:
        overrides = {
            o.vehicle_id: o for o in db_session.query(CoverageOverride).filter(
                CoverageOverride.vehicle_id.in_(vehicle_ids)
            ).all()
        }

    entries = []
    covered = 0
    for vehicle in vehicles:
        verdict = resolve_coverage(
            vehicle, host_provider, catalog, overrides.get(vehicle.id), value_factor
        )
        covered += 1 if verdict.has_coverage else 0
        entries.append(_vehicle_entry(vehicle, verdict, estimate_vehicle_value(vehicle, value_factor)))

    return {
        "host_id": host.id,
        "host_name": host.name,
        "provider": host_provider.to_dict() if host_provider else None,
        "total_vehicles": len(vehicles),
        "total_covered": covered,
        "total_gaps": len(vehicles) - covered,
        "vehicles": entries,
    }


def get_vehicle_coverage(
    vehicle_id: str,
    db_session,
    value_factor: float = DEFAULT_VALUE_FACTOR
) -> Tuple[Any, Dict[str, Any]]:
    """
    Coverage verdict for a single vehicle.

    Returns:
        Tuple of (vehicle, entry dict)
    """
    from fleet_coverage.models import Host, Vehicle, CoverageOverride, InsuranceProvider
    from fleet_coverage.exceptions import NotFoundError

    vehicle = db_session.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError(f"Vehicle {vehicle_id} not found", details={"vehicle_id": vehicle_id})

    host = db_session.get(Host, vehicle.host_id)
    catalog = load_catalog(db_session)

    host_provider = None
    if host and host.insurance_provider_id:
        provider = db_session.get(InsuranceProvider, host.insurance_provider_id)
        host_provider = ProviderRules.from_model(provider) if provider else None

    override = db_session.query(CoverageOverride).filter(
        CoverageOverride.vehicle_id == vehicle_id
    ).first()

    verdict = resolve_coverage(vehicle, host_provider, catalog, override, value_factor)
    return vehicle, _vehicle_entry(vehicle, verdict, estimate_vehicle_value(vehicle, value_factor))
