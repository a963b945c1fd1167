"""Summarise a session into a MigrationReport."""
from legacylink.schemas.migration import MigrationReport, UnitReport
from legacylink.schemas.session import Session, TestStatus, UnitStatus


def build_report(session: Session) -> MigrationReport:
    units = []
    for u in session.units:
        passed = sum(1 for r in u.test_results if r.status is TestStatus.PASSED)
        units.append(UnitReport(
            id=u.id,
            name=u.name,
            status=u.status.value,
            verified=u.verified,
            healing_attempts=u.healing_attempts,
            validation_runs=u.validation_runs,
            passed=passed,
            failed=len(u.test_results) - passed,
            coverage=u.coverage,
            error=u.error,
        ))
    done = sum(1 for u in session.units if u.status is UnitStatus.DONE)
    verified = sum(1 for u in session.units if u.verified)
    if session.units and verified == len(session.units):
        status = 'full'
    elif done:
        status = 'partial'
    else:
        status = 'blocked'
    return MigrationReport(
        session_id=session.id,
        session_status=session.status.value,
        migration_status=status,
        units_total=len(session.units),
        units_done=done,
        units_verified=verified,
        units_error=sum(1 for u in session.units if u.status is UnitStatus.ERROR),
        progress=session.progress,
        units=units,
        overall_plan=session.overall_plan,
    )
