"""
Gap scanner: fleet-wide coverage report with prioritized recommendations.

Data access is a fixed number of bulk queries (providers, vehicles joined
with their hosts, overrides); resolution then runs in memory, once per vehicle.
"""

from collections import Counter, OrderedDict
from typing import Dict, Any, List, Optional
import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from fleet_coverage.exceptions import DataAccessError
from fleet_coverage.services.catalog import ProviderCatalog, ProviderRules
from fleet_coverage.services.coverage import (
    CoverageVerdict,
    DEFAULT_VALUE_FACTOR,
    estimate_vehicle_value,
    resolve_coverage,
)

logger = logging.getLogger("fleet_coverage")

GAP_HOST_NO_INSURANCE = "HOST_NO_INSURANCE"
GAP_VEHICLE_EXCLUDED = "VEHICLE_EXCLUDED"

DEFAULT_THRESHOLDS = {
    "luxury_value_threshold": 75000.0,
    "budget_value_threshold": 25000.0,
}


def scan_fleet(
    db_session,
    include_inactive: bool = False,
    thresholds: Optional[Dict[str, float]] = None,
    value_factor: float = DEFAULT_VALUE_FACTOR
) -> Dict[str, Any]:
    """
    Scan every vehicle in scope for coverage gaps.

    Args:
        db_session: Database session
        include_inactive: Also scan vehicles that are not listed
        thresholds: luxury_value_threshold / budget_value_threshold
        value_factor: Daily-rate factor for the value estimate

    Returns:
        Gap report: summary, covered, host_gaps, vehicle_rule_gaps, all_gaps,
        critical_gaps, warning_gaps, providers, recommendations

    Raises:
        DataAccessError: if any query fails; no partial report is returned
    """
    thresholds = {**DEFAULT_THRESHOLDS, **(thresholds or {})}
    start_time = time.time()

    try:
        catalog, rules_by_id = _load_providers(db_session)
        if len(catalog) == 0:
            logger.warning("Gap scan short-circuited | reason=no_active_providers")
            return _no_provider_report()
        rows, overrides_by_vehicle = _load_vehicles(db_session, rules_by_id, include_inactive)
    except SQLAlchemyError as e:
        logger.error(f"Gap scan failed | operation=scan_fleet | error={str(e)}")
        raise DataAccessError(
            "Coverage gap scan failed while loading fleet data",
            operation="scan_fleet",
        ) from e

    covered = []
    host_gaps = []
    vehicle_rule_gaps = []

    for vehicle, host, host_provider in rows:
        verdict = resolve_coverage(
            vehicle,
            host_provider,
            catalog,
            overrides_by_vehicle.get(vehicle.id),
            value_factor,
        )
        entry = _build_entry(vehicle, host, verdict, estimate_vehicle_value(vehicle, value_factor))

        if verdict.has_coverage:
            covered.append(entry)
            continue

        if host_provider is None or host_provider.provider_id not in catalog:
            entry["gap_type"] = GAP_HOST_NO_INSURANCE
            entry["recommendation"] = f"Assign an insurance provider to {host.name}"
            host_gaps.append(entry)
        else:
            entry["gap_type"] = GAP_VEHICLE_EXCLUDED
            entry["recommendation"] = _vehicle_recommendation(verdict)
            vehicle_rule_gaps.append(entry)

    all_gaps = host_gaps + vehicle_rule_gaps
    critical_gaps = [g for g in all_gaps if g["is_active"]]
    warning_gaps = [g for g in all_gaps if not g["is_active"]]

    summary = {
        "total_vehicles": len(rows),
        "total_covered": len(covered),
        "total_gaps": len(all_gaps),
        "host_gaps": len(host_gaps),
        "vehicle_rule_gaps": len(vehicle_rule_gaps),
        "critical_gaps": len(critical_gaps),
        "warning_gaps": len(warning_gaps),
        "active_providers": len(catalog),
        "critical_issue": False,
    }

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        f"Gap scan completed | "
        f"vehicles={summary['total_vehicles']} | "
        f"covered={summary['total_covered']} | "
        f"gaps={summary['total_gaps']} | "
        f"duration_ms={duration_ms:.2f}"
    )

    return {
        "summary": summary,
        "covered": covered,
        "host_gaps": host_gaps,
        "vehicle_rule_gaps": vehicle_rule_gaps,
        "all_gaps": all_gaps,
        "critical_gaps": critical_gaps,
        "warning_gaps": warning_gaps,
        "providers": [p.to_dict() for p in catalog],
        "recommendations": generate_recommendations(host_gaps, vehicle_rule_gaps, catalog, thresholds),
    }


def _load_providers(db_session):
    """Load every provider; the catalog keeps only the active ones."""
    from fleet_coverage.models import InsuranceProvider

    # Query 1: every provider, so inactive assignments still resolve by name
    providers = db_session.query(InsuranceProvider).all()
    rules_by_id = {p.id: ProviderRules.from_model(p) for p in providers}
    return ProviderCatalog(list(rules_by_id.values())), rules_by_id


def _load_vehicles(db_session, rules_by_id: Dict[str, ProviderRules], include_inactive: bool):
    """Bulk-load vehicles with their hosts, and overrides."""
    from fleet_coverage.models import Host, Vehicle, CoverageOverride

    # Query 2: vehicles joined with their host
    query = db_session.query(Vehicle, Host).join(Host, Vehicle.host_id == Host.id)
    if not include_inactive:
        query = query.filter(Vehicle.is_active == True)  # noqa: E712
    vehicle_rows = query.order_by(Vehicle.id).all()

    # Query 3: overrides, indexed by vehicle id
    overrides_by_vehicle = {o.vehicle_id: o for o in db_session.query(CoverageOverride).all()}

    rows = [
        (vehicle, host, rules_by_id.get(host.insurance_provider_id) if host.insurance_provider_id else None)
        for vehicle, host in vehicle_rows
    ]
    return rows, overrides_by_vehicle


def _build_entry(vehicle, host, verdict: CoverageVerdict, value: float) -> Dict[str, Any]:
    return {
        "vehicle_id": vehicle.id,
        "make": vehicle.make,
        "model": vehicle.model,
        "year": vehicle.year,
        "daily_rate": vehicle.daily_rate,
        "estimated_value": round(value, 2),
        "is_active": vehicle.is_active,
        "host": {"id": host.id, "name": host.name, "email": host.email},
        "has_coverage": verdict.has_coverage,
        "coverage_source": verdict.source.value,
        "coverage_provider": verdict.provider.to_dict() if verdict.provider else None,
        "has_override": verdict.source.value == "OVERRIDE",
        "eligible_providers": [p.to_dict() for p in verdict.eligible_providers],
        "warnings": list(verdict.warnings),
    }


def _vehicle_recommendation(verdict: CoverageVerdict) -> str:
    if verdict.eligible_providers:
        names = ", ".join(p.name for p in verdict.eligible_providers)
        return f"Move vehicle to a matching provider ({names}) or add a coverage override"
    return "No active provider accepts this vehicle; add a coverage override or a new provider"


def _no_provider_report() -> Dict[str, Any]:
    return {
        "summary": {
            "total_vehicles": 0,
            "total_covered": 0,
            "total_gaps": 0,
            "host_gaps": 0,
            "vehicle_rule_gaps": 0,
            "critical_gaps": 0,
            "warning_gaps": 0,
            "active_providers": 0,
            "critical_issue": True,
        },
        "covered": [],
        "host_gaps": [],
        "vehicle_rule_gaps": [],
        "all_gaps": [],
        "critical_gaps": [],
        "warning_gaps": [],
        "providers": [],
        "recommendations": [
            "CRITICAL: No active insurance providers. Add and activate at least one provider before vehicles can be covered."
        ],
    }


def generate_recommendations(
    host_gaps: List[Dict[str, Any]],
    vehicle_rule_gaps: List[Dict[str, Any]],
    catalog: ProviderCatalog,
    thresholds: Dict[str, float]
) -> List[str]:
    """
    Build the ordered list of remediation recommendations.

    Order: host-level gaps, high-value gaps, low-value gaps, excluded makes,
    provider redundancy.
    """
    recommendations = []
    all_gaps = host_gaps + vehicle_rule_gaps

    if host_gaps:
        hosts = OrderedDict()
        for gap in host_gaps:
            hosts.setdefault(gap["host"]["id"], gap["host"]["name"])
        recommendations.append(
            f"CRITICAL: {len(hosts)} host(s) with {len(host_gaps)} vehicle(s) have no insurance assigned "
            f"({', '.join(hosts.values())}). Assign a provider to each host."
        )

    luxury = thresholds["luxury_value_threshold"]
    budget = thresholds["budget_value_threshold"]

    high_value = [g for g in all_gaps if g["estimated_value"] > luxury]
    if high_value:
        recommendations.append(
            f"{len(high_value)} uncovered vehicle(s) valued above ${luxury:,.0f}. "
            f"Consider adding a luxury-tier provider."
        )

    low_value = [g for g in all_gaps if g["estimated_value"] < budget]
    if low_value:
        recommendations.append(
            f"{len(low_value)} uncovered vehicle(s) valued below ${budget:,.0f}. "
            f"Consider expanding low-end coverage."
        )

    excluded_makes = Counter(
        g["make"] for g in vehicle_rule_gaps
        if any(w.startswith(f"Make {g['make']} excluded") for w in g["warnings"])
    )
    if excluded_makes:
        listed = ", ".join(f"{make} ({count})" for make, count in sorted(excluded_makes.items()))
        recommendations.append(f"Review make exclusions causing gaps: {listed}.")

    if len(catalog) == 1:
        recommendations.append(
            "Only one active provider. Add a second provider to reduce single-provider risk."
        )

    if not all_gaps:
        recommendations.append("All vehicles in scope have coverage.")

    return recommendations
