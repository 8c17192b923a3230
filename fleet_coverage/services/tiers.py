"""
Tier service: moves a host between the P2P and COMMERCIAL coverage tiers.

Each transition reads the host row under a row lock, checks its
preconditions, mutates both insurance slots and the derived commission
fields, appends a history row and commits, all in one transaction.
Audit and notification records are emitted after the commit.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Any, List, Optional, Callable, Tuple
import logging

from sqlalchemy.exc import SQLAlchemyError

from fleet_coverage.models import (
    Host,
    InsuranceProvider,
    TierChange,
    SlotStatus,
    InsuranceType,
    EarningsTier,
    BLOCKED_ACCOUNT_STATUSES,
)
from fleet_coverage.exceptions import (
    CoverageEngineError,
    ValidationError,
    NotFoundError,
    AccountBlockedError,
    InsuranceNotEligibleError,
    AlreadyActiveError,
    BookingLockError,
    DataAccessError,
    InvariantViolation,
)
from fleet_coverage.services.bookings import BookingLockOracle, SqlBookingLockOracle
from fleet_coverage.services.audit import (
    AuditSink,
    NotificationSink,
    ActivityLogSink,
    HostNotificationSink,
    emit_side_effects,
)

logger = logging.getLogger("fleet_coverage")

# Static tier table: tier -> platform commission
COMMISSION_RATES = {
    EarningsTier.BASIC: 0.60,
    EarningsTier.STANDARD: 0.25,
    EarningsTier.PREMIUM: 0.10,
}

TIER_FOR_ACTIVE_SLOT = {
    None: EarningsTier.BASIC,
    InsuranceType.P2P: EarningsTier.STANDARD,
    InsuranceType.COMMERCIAL: EarningsTier.PREMIUM,
}

STATE_NO_COVERAGE = "NO_COVERAGE"
STATE_P2P_ACTIVE = "P2P_ACTIVE"
STATE_COMMERCIAL_ACTIVE = "COMMERCIAL_ACTIVE"


@dataclass(frozen=True)
class SlotView:
    status: Optional[str]
    provider_id: Optional[str]
    provider_name: Optional[str]
    policy_number: Optional[str]


@dataclass(frozen=True)
class ToggleResult:
    """Host tier after a transition, for display."""
    host_id: str
    new_tier: str
    host_earnings_fraction: float
    platform_commission_fraction: float
    p2p_slot: SlotView
    commercial_slot: SlotView
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# State helpers
# ============================================================================

def parse_insurance_type(value) -> InsuranceType:
    """Parse a target tier, raising ValidationError for anything else."""
    if isinstance(value, InsuranceType):
        return value
    try:
        return InsuranceType(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"Insurance type must be either \"P2P\" or \"COMMERCIAL\", got {value!r}",
            details={"target_tier": value},
        )


def _other(insurance_type: InsuranceType) -> InsuranceType:
    return InsuranceType.COMMERCIAL if insurance_type == InsuranceType.P2P else InsuranceType.P2P


def _prefix(insurance_type: InsuranceType) -> str:
    return "p2p" if insurance_type == InsuranceType.P2P else "commercial"


def get_slot_status(host: Host, insurance_type: InsuranceType) -> Optional[str]:
    return getattr(host, f"{_prefix(insurance_type)}_status")


def _set_slot_status(host: Host, insurance_type: InsuranceType, status: Optional[str]) -> None:
    setattr(host, f"{_prefix(insurance_type)}_status", status)


def _slot_provider_id(host: Host, insurance_type: InsuranceType) -> Optional[str]:
    return getattr(host, f"{_prefix(insurance_type)}_provider_id")


def _clear_slot(host: Host, insurance_type: InsuranceType, status: Optional[str] = None) -> None:
    prefix = _prefix(insurance_type)
    setattr(host, f"{prefix}_status", status)
    setattr(host, f"{prefix}_provider_id", None)
    setattr(host, f"{prefix}_policy_number", None)
    setattr(host, f"{prefix}_expires_at", None)


def derive_coverage_state(host: Host) -> str:
    """
    Coverage state derived from the two slot statuses.

    Raises:
        InvariantViolation: both slots are ACTIVE
    """
    p2p_active = host.p2p_status == SlotStatus.ACTIVE.value
    commercial_active = host.commercial_status == SlotStatus.ACTIVE.value

    if p2p_active and commercial_active:
        logger.critical(
            f"Invariant violation: both insurance slots ACTIVE | host_id={host.id}"
        )
        raise InvariantViolation(
            f"Host {host.id} has both P2P and COMMERCIAL insurance ACTIVE; tier changes are refused until resolved",
            details={"host_id": host.id},
        )
    if p2p_active:
        return STATE_P2P_ACTIVE
    if commercial_active:
        return STATE_COMMERCIAL_ACTIVE
    return STATE_NO_COVERAGE


def _active_slot(host: Host) -> Optional[InsuranceType]:
    state = derive_coverage_state(host)
    if state == STATE_P2P_ACTIVE:
        return InsuranceType.P2P
    if state == STATE_COMMERCIAL_ACTIVE:
        return InsuranceType.COMMERCIAL
    return None


def expected_tier(host: Host) -> Tuple[EarningsTier, float]:
    """Tier and commission the table prescribes for the host's active slot."""
    tier = TIER_FOR_ACTIVE_SLOT[_active_slot(host)]
    return tier, COMMISSION_RATES[tier]


def check_tier_consistency(host: Host) -> List[str]:
    """
    Compare the stored tier fields with the tier table.

    Mismatches are reported and logged, never rewritten here.
    """
    tier, rate = expected_tier(host)
    issues = []
    if host.earnings_tier != tier.value:
        issues.append(f"earnings_tier is {host.earnings_tier}, expected {tier.value}")
    if abs((host.commission_rate or 0) - rate) > 1e-9:
        issues.append(f"commission_rate is {host.commission_rate}, expected {rate}")
    if issues:
        logger.warning(f"Tier fields inconsistent | host_id={host.id} | issues={'; '.join(issues)}")
    return issues


def earnings_percent(tier: str) -> str:
    return f"{round((1 - COMMISSION_RATES[EarningsTier(tier)]) * 100)}%"


# ============================================================================
# Precondition checks
# ============================================================================

def _lock_host(db_session, host_id: str) -> Host:
    # populate_existing: a Host already in the identity map is overwritten with the locked row
    host = db_session.query(Host).filter(
        Host.id == host_id
    ).populate_existing().with_for_update().first()
    if not host:
        raise NotFoundError(f"Host {host_id} not found", details={"host_id": host_id})
    return host


def _slot_provider_available(db_session, host: Host, insurance_type: InsuranceType) -> bool:
    provider_id = _slot_provider_id(host, insurance_type)
    if not provider_id:
        return False
    provider = db_session.get(InsuranceProvider, provider_id)
    return provider is not None and bool(provider.is_active)


def _check_slot_provider(db_session, host: Host, insurance_type: InsuranceType) -> None:
    """The slot's provider must exist and be active before the slot can cover the host."""
    if not _slot_provider_available(db_session, host, insurance_type):
        provider_id = _slot_provider_id(host, insurance_type)
        raise InsuranceNotEligibleError(
            f"{insurance_type.value} insurance provider {provider_id} is missing or inactive",
            details={
                "host_id": host.id,
                "insurance_type": insurance_type.value,
                "provider_id": provider_id,
            },
        )


def _check_account(host: Host) -> None:
    if host.account_status in BLOCKED_ACCOUNT_STATUSES:
        raise AccountBlockedError(
            f"Host account is {host.account_status}; insurance changes are not allowed",
            details={"host_id": host.id, "account_status": host.account_status},
        )


def _check_booking_lock(booking_oracle: BookingLockOracle, host: Host, now: datetime) -> None:
    lock = booking_oracle.count_blocking_bookings(host.id, now)
    if lock.is_locked:
        next_available = lock.latest_end_date.isoformat() if lock.latest_end_date else None
        raise BookingLockError(
            f"Cannot change insurance with {lock.count} active or upcoming booking(s)",
            details={
                "host_id": host.id,
                "count": lock.count,
                "next_available_date": next_available,
            },
        )


# ============================================================================
# Transition machinery
# ============================================================================

def _apply_tier(
    db_session,
    host: Host,
    action: str,
    insurance_type: InsuranceType,
    actor: str,
    reason: str,
    now: datetime
) -> TierChange:
    """Recompute the derived tier fields and append a history row."""
    previous_tier = host.earnings_tier
    previous_commission = host.commission_rate
    tier, rate = expected_tier(host)

    host.earnings_tier = tier.value
    host.commission_rate = rate
    host.last_tier_change = now
    host.tier_change_reason = reason
    host.tier_change_by = actor

    change = TierChange(
        host_id=host.id,
        action=action,
        insurance_type=insurance_type.value,
        from_tier=previous_tier,
        to_tier=tier.value,
        previous_commission=previous_commission,
        new_commission=rate,
        reason=reason,
        actor=actor,
        created_at=now
    )
    db_session.add(change)
    return change


def _run_transition(
    db_session,
    host_id: str,
    operation: str,
    mutate: Callable[[Host], TierChange]
) -> Tuple[Host, TierChange]:
    """
    Lock the host, apply the mutation and commit, all or nothing.
    """
    try:
        host = _lock_host(db_session, host_id)
        change = mutate(host)
        # Re-validate the exclusivity invariant before commit
        derive_coverage_state(host)
        db_session.commit()
    except CoverageEngineError as e:
        db_session.rollback()
        logger.info(f"Tier transition rejected | operation={operation} | host_id={host_id} | code={e.code}")
        raise
    except SQLAlchemyError as e:
        db_session.rollback()
        logger.error(f"Tier transition failed | operation={operation} | host_id={host_id} | error={str(e)}")
        raise DataAccessError(f"{operation} failed", operation=operation) from e

    db_session.refresh(host)
    db_session.refresh(change)
    return host, change


def _slot_view(host: Host, insurance_type: InsuranceType, providers: Dict[str, InsuranceProvider]) -> SlotView:
    prefix = _prefix(insurance_type)
    provider_id = getattr(host, f"{prefix}_provider_id")
    provider = providers.get(provider_id) if provider_id else None
    return SlotView(
        status=getattr(host, f"{prefix}_status"),
        provider_id=provider_id,
        provider_name=provider.name if provider else None,
        policy_number=getattr(host, f"{prefix}_policy_number"),
    )


def build_result(host: Host, db_session, message: str = "") -> ToggleResult:
    provider_ids = [pid for pid in (host.p2p_provider_id, host.commercial_provider_id) if pid]
    providers = {}
    if provider_ids:
        providers = {
            p.id: p for p in db_session.query(InsuranceProvider).filter(
                InsuranceProvider.id.in_(provider_ids)
            ).all()
        }
    return ToggleResult(
        host_id=host.id,
        new_tier=host.earnings_tier,
        host_earnings_fraction=round(1 - host.commission_rate, 4),
        platform_commission_fraction=host.commission_rate,
        p2p_slot=_slot_view(host, InsuranceType.P2P, providers),
        commercial_slot=_slot_view(host, InsuranceType.COMMERCIAL, providers),
        message=message,
    )


def _collaborators(db_session, booking_oracle, audit_sink, notification_sink, notification_type):
    return (
        booking_oracle or SqlBookingLockOracle(db_session),
        audit_sink or ActivityLogSink(db_session),
        notification_sink or HostNotificationSink(db_session, notification_type),
    )


def _change_metadata(host: Host, change: TierChange, **extra) -> Dict[str, Any]:
    metadata = {
        "host_id": host.id,
        "host_name": host.name,
        "insurance_type": change.insurance_type,
        "previous_tier": change.from_tier,
        "new_tier": change.to_tier,
        "previous_commission": change.previous_commission,
        "new_commission": change.new_commission,
        "actor": change.actor,
        "reason": change.reason,
    }
    metadata.update(extra)
    return metadata


# ============================================================================
# Transitions
# ============================================================================

def toggle_coverage(
    host_id: str,
    target_tier,
    actor: str,
    db_session,
    booking_oracle: Optional[BookingLockOracle] = None,
    audit_sink: Optional[AuditSink] = None,
    notification_sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None
) -> ToggleResult:
    """
    Switch a host to the P2P or COMMERCIAL tier.

    Preconditions, in order:
    1. Host exists and its account is not blocked
    2. target_tier is P2P or COMMERCIAL
    3. Target insurance is on file, previously approved (INACTIVE), not already ACTIVE
    4. No active or future bookings

    Args:
        host_id: Host ID
        target_tier: "P2P" or "COMMERCIAL"
        actor: Identity performing the switch
        db_session: Database session
        booking_oracle: Booking lock collaborator (defaults to the booking table)
        audit_sink: Audit collaborator (defaults to activity_log)
        notification_sink: Notification collaborator (defaults to host_notification)
        now: Clock override

    Returns:
        ToggleResult

    Raises:
        ValidationError, PreconditionError, DataAccessError, InvariantViolation
    """
    now = now or datetime.utcnow()
    booking_oracle, audit_sink, notification_sink = _collaborators(
        db_session, booking_oracle, audit_sink, notification_sink, "INSURANCE_TOGGLED"
    )
    state = {}

    def mutate(host: Host) -> TierChange:
        _check_account(host)
        target = parse_insurance_type(target_tier)
        state["target"] = target
        current_state = derive_coverage_state(host)
        other = _other(target)

        status = get_slot_status(host, target)
        if status == SlotStatus.ACTIVE.value:
            raise AlreadyActiveError(
                f"{target.value} insurance is already active",
                details={"host_id": host.id, "target_tier": target.value, "current_status": status},
            )
        if status != SlotStatus.INACTIVE.value or not _slot_provider_id(host, target):
            raise InsuranceNotEligibleError(
                f"{target.value} insurance is {status or 'not on file'}; only approved insurance can be activated",
                details={"host_id": host.id, "target_tier": target.value, "current_status": status},
            )

        _check_slot_provider(db_session, host, target)

        _check_booking_lock(booking_oracle, host, now)

        _set_slot_status(host, target, SlotStatus.ACTIVE.value)
        if get_slot_status(host, other) == SlotStatus.ACTIVE.value:
            _set_slot_status(host, other, SlotStatus.INACTIVE.value)

        state["from_state"] = current_state
        return _apply_tier(
            db_session, host, "TOGGLED", target, actor,
            f"Switched to {target.value} insurance", now
        )

    host, change = _run_transition(db_session, host_id, "toggle_coverage", mutate)
    target = state["target"]

    logger.info(
        f"Insurance toggled | host_id={host.id} | target={target.value} | "
        f"from_state={state['from_state']} | tier={change.from_tier}->{change.to_tier} | "
        f"commission={change.previous_commission}->{change.new_commission} | actor={actor}"
    )

    percent = earnings_percent(host.earnings_tier)
    emit_side_effects(
        db_session, audit_sink, notification_sink,
        host.id, "INSURANCE_TOGGLED",
        _change_metadata(host, change, from_state=state["from_state"]),
        f"Switched to {target.value} Insurance",
        f"Your {target.value} insurance is now active. You're earning {percent} per booking "
        f"({host.earnings_tier} tier)."
    )

    return build_result(
        host, db_session,
        f"Switched to {target.value} insurance. Host now at {host.earnings_tier} tier ({percent} earnings)."
    )


def approve_insurance(
    host_id: str,
    insurance_type,
    actor: str,
    db_session,
    booking_oracle: Optional[BookingLockOracle] = None,
    audit_sink: Optional[AuditSink] = None,
    notification_sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None
) -> ToggleResult:
    """
    Approve a PENDING insurance submission and make it the active slot.

    The other slot is set INACTIVE if it was active; that switch is subject
    to the booking lock.
    """
    now = now or datetime.utcnow()
    booking_oracle, audit_sink, notification_sink = _collaborators(
        db_session, booking_oracle, audit_sink, notification_sink, "INSURANCE_APPROVED"
    )
    target = parse_insurance_type(insurance_type)
    other = _other(target)
    state = {}

    def mutate(host: Host) -> TierChange:
        derive_coverage_state(host)
        status = get_slot_status(host, target)
        if status != SlotStatus.PENDING.value:
            raise InsuranceNotEligibleError(
                f"{target.value} insurance is currently {status or 'not on file'}, not PENDING",
                details={"host_id": host.id, "insurance_type": target.value, "current_status": status},
            )
        prefix = _prefix(target)
        if not getattr(host, f"{prefix}_provider_id") or not getattr(host, f"{prefix}_policy_number"):
            raise InsuranceNotEligibleError(
                f"Host has not submitted complete {target.value} insurance details",
                details={"host_id": host.id, "insurance_type": target.value},
            )
        _check_slot_provider(db_session, host, target)

        state["replaced"] = None
        if get_slot_status(host, other) == SlotStatus.ACTIVE.value:
            _check_booking_lock(booking_oracle, host, now)
            _set_slot_status(host, other, SlotStatus.INACTIVE.value)
            state["replaced"] = f"{other.value} insurance automatically set to INACTIVE"

        _set_slot_status(host, target, SlotStatus.ACTIVE.value)
        reason = f"{target.value} insurance approved"
        if state["replaced"]:
            reason = f"{reason} ({state['replaced']})"
        return _apply_tier(db_session, host, "APPROVED", target, actor, reason, now)

    host, change = _run_transition(db_session, host_id, "approve_insurance", mutate)
    logger.info(
        f"Insurance approved | host_id={host.id} | type={target.value} | "
        f"tier={change.from_tier}->{change.to_tier} | actor={actor}"
    )

    percent = earnings_percent(host.earnings_tier)
    body = (
        f"Great news! Your {target.value} insurance has been approved. "
        f"You're now earning {percent} per booking ({host.earnings_tier} tier)."
    )
    if state["replaced"]:
        body = f"{body} {state['replaced']}."
    emit_side_effects(
        db_session, audit_sink, notification_sink,
        host.id, "INSURANCE_APPROVED",
        _change_metadata(host, change, auto_inactive_action=state["replaced"]),
        f"{target.value} Insurance Approved!", body
    )

    return build_result(
        host, db_session,
        f"{target.value} insurance approved! Host upgraded to {host.earnings_tier} tier ({percent} earnings)."
    )


def reject_insurance(
    host_id: str,
    insurance_type,
    reason: str,
    actor: str,
    db_session,
    audit_sink: Optional[AuditSink] = None,
    notification_sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None
) -> ToggleResult:
    """
    Reject a PENDING insurance submission. The slot is marked REJECTED and
    its policy details are cleared; the active slot and tier are unaffected.
    """
    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required")

    now = now or datetime.utcnow()
    _, audit_sink, notification_sink = _collaborators(
        db_session, None, audit_sink, notification_sink, "INSURANCE_REJECTED"
    )
    target = parse_insurance_type(insurance_type)

    def mutate(host: Host) -> TierChange:
        derive_coverage_state(host)
        status = get_slot_status(host, target)
        if status != SlotStatus.PENDING.value:
            raise InsuranceNotEligibleError(
                f"{target.value} insurance is currently {status or 'not on file'}, not PENDING",
                details={"host_id": host.id, "insurance_type": target.value, "current_status": status},
            )
        _clear_slot(host, target, SlotStatus.REJECTED.value)
        return _apply_tier(
            db_session, host, "REJECTED", target, actor,
            f"{target.value} insurance rejected - {reason}", now
        )

    host, change = _run_transition(db_session, host_id, "reject_insurance", mutate)
    logger.info(f"Insurance rejected | host_id={host.id} | type={target.value} | actor={actor}")

    emit_side_effects(
        db_session, audit_sink, notification_sink,
        host.id, "INSURANCE_REJECTED",
        _change_metadata(host, change),
        f"{target.value} Insurance Needs Attention",
        f"Your {target.value} insurance submission requires updates: {reason}"
    )

    return build_result(host, db_session, f"{target.value} insurance rejected.")


def remove_insurance(
    host_id: str,
    insurance_type,
    actor: str,
    db_session,
    booking_oracle: Optional[BookingLockOracle] = None,
    audit_sink: Optional[AuditSink] = None,
    notification_sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None
) -> ToggleResult:
    """
    Remove a host's insurance from one slot.

    Removing the active slot is subject to the booking lock; an approved
    (INACTIVE) insurance in the other slot is promoted to ACTIVE when its
    provider exists and is active.
    """
    now = now or datetime.utcnow()
    booking_oracle, audit_sink, notification_sink = _collaborators(
        db_session, booking_oracle, audit_sink, notification_sink, "INSURANCE_REMOVED"
    )
    target = parse_insurance_type(insurance_type)
    other = _other(target)
    state = {}

    def mutate(host: Host) -> TierChange:
        _check_account(host)
        derive_coverage_state(host)
        status = get_slot_status(host, target)
        if status is None:
            raise InsuranceNotEligibleError(
                f"Host has no {target.value} insurance on file",
                details={"host_id": host.id, "insurance_type": target.value, "current_status": status},
            )

        if status == SlotStatus.ACTIVE.value:
            _check_booking_lock(booking_oracle, host, now)

        _clear_slot(host, target)
        state["promoted"] = None
        if (
            get_slot_status(host, other) == SlotStatus.INACTIVE.value
            and _slot_provider_available(db_session, host, other)
        ):
            _set_slot_status(host, other, SlotStatus.ACTIVE.value)
            state["promoted"] = f"{other.value} insurance automatically set to ACTIVE"

        return _apply_tier(
            db_session, host, "REMOVED", target, actor,
            f"{target.value} insurance removed", now
        )

    host, change = _run_transition(db_session, host_id, "remove_insurance", mutate)
    logger.info(
        f"Insurance removed | host_id={host.id} | type={target.value} | "
        f"tier={change.from_tier}->{change.to_tier} | actor={actor}"
    )

    percent = earnings_percent(host.earnings_tier)
    emit_side_effects(
        db_session, audit_sink, notification_sink,
        host.id, "INSURANCE_REMOVED",
        _change_metadata(host, change, auto_active_action=state["promoted"]),
        f"{target.value} Insurance Removed",
        f"Your {target.value} insurance has been removed. You are now at {host.earnings_tier} tier "
        f"earning {percent} per booking."
    )

    return build_result(
        host, db_session,
        f"{target.value} insurance removed. Host now at {host.earnings_tier} tier ({percent} earnings)."
    )


def get_host_tier(host_id: str, db_session) -> Dict[str, Any]:
    """
    Current tier view of a host, with the tier-table consistency check.
    """
    host = db_session.get(Host, host_id)
    if not host:
        raise NotFoundError(f"Host {host_id} not found", details={"host_id": host_id})

    result = build_result(host, db_session)
    history = db_session.query(TierChange).filter(
        TierChange.host_id == host_id
    ).order_by(TierChange.created_at, TierChange.id).all()

    return {
        **result.to_dict(),
        "coverage_state": derive_coverage_state(host),
        "consistency_issues": check_tier_consistency(host),
        "history": [
            {
                "action": h.action,
                "insurance_type": h.insurance_type,
                "from_tier": h.from_tier,
                "to_tier": h.to_tier,
                "previous_commission": h.previous_commission,
                "new_commission": h.new_commission,
                "reason": h.reason,
                "actor": h.actor,
                "created_at": h.created_at.isoformat(),
            }
            for h in history
        ],
    }
