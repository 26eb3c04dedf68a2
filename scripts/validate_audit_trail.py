#!/usr/bin/env python3
"""
Validate persisted verification state and its audit trail.

Checks the lifecycle invariants (credverify.integrity) and that every request
and every finished attempt left the audit entries it should have.

Usage:
    python scripts/validate_audit_trail.py --db data/credverify.db
"""

import argparse
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from credverify import audit
from credverify.database import AuditLogRow, VerificationAttemptRow, VerificationRequestRow, get_session
from credverify.integrity import check_invariants

FINISHED_ACTIONS = {
    "COMPLETED": audit.ATTEMPT_COMPLETED,
    "FAILED": audit.ATTEMPT_FAILED,
}


def missing_audit_entries(session):
    """Return (entity_id, expected_action) pairs with no matching audit row."""
    logged = {(row.entity_id, row.action) for row in session.query(AuditLogRow).all()}
    missing = []

    for request in session.query(VerificationRequestRow).all():
        if (request.id, audit.VERIFICATION_SUBMITTED) not in logged:
            missing.append((request.id, audit.VERIFICATION_SUBMITTED))
        if request.manually_reviewed and (request.id, audit.MANUAL_REVIEW_COMPLETED) not in logged:
            missing.append((request.id, audit.MANUAL_REVIEW_COMPLETED))

    for attempt in session.query(VerificationAttemptRow).filter(VerificationAttemptRow.attempt_number < 100).all():
        action = FINISHED_ACTIONS.get(attempt.status)
        if action and (attempt.id, action) not in logged:
            missing.append((attempt.id, action))
    return missing


def validate(db_path: Path, max_attempts: int) -> bool:
    print(f"Checking database at {db_path}...")
    session = get_session(db_path)
    try:
        violations = check_invariants(session, max_attempts=max_attempts)
        missing = missing_audit_entries(session)
    finally:
        session.close()

    if violations:
        print(f"\n❌ INVARIANT VIOLATIONS: {len(violations)}")
        for v in violations[:10]:
            print(f"   - [{v.rule}] {v.request_id}: {v.message}")
        if len(violations) > 10:
            print(f"   ... and {len(violations) - 10} more")

    if missing:
        print(f"\n❌ MISSING AUDIT ENTRIES: {len(missing)}")
        for entity_id, action in missing[:10]:
            print(f"   - {entity_id}: {action}")
        if len(missing) > 10:
            print(f"   ... and {len(missing) - 10} more")

    if not violations and not missing:
        print("✅ Verification store is consistent")
        print("   - Attempt numbering and limits hold")
        print("   - Every request and finished attempt is audited")
        return True
    return False


def main():
    parser = argparse.ArgumentParser(description="Validate verification state and audit trail")
    parser.add_argument("--db", type=Path, default=Path("data/credverify.db"),
                        help="Path to SQLite database file")
    parser.add_argument("--max-attempts", type=int, default=3,
                        help="Automated attempts allowed per request")

    args = parser.parse_args()

    if not args.db.exists():
        print(f"❌ Database file not found: {args.db}")
        sys.exit(1)

    success = validate(args.db, args.max_attempts)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
