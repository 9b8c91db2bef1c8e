"""CLI script to create missing program instances for existing enrollments.
Usage: python scripts/backfill_instances.py [--org ORG] [--dry-run]
"""
import sys
import argparse
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `coaching` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from coaching.database import engine, create_db_and_tables
from coaching import repositories, services


def main(org: Optional[str] = None, dry_run: bool = False):
    """Ensure an instance exists for every enrollment (optionally one organization).

    Cohort enrollments ensure their cohort's shared instance. Results are
    printed to stdout for a quick CLI feedback loop.
    """
    create_db_and_tables()
    with Session(engine) as session:
        enrollments = repositories.EnrollmentRepository(session).list_for_organization(org)
        instances = repositories.InstanceRepository(session)
        svc = services.ProgramInstanceService(session)
        ensured = 0
        missing = 0
        failed = 0
        for e in enrollments:
            if e.cohort_id is not None:
                existing = instances.find_by_cohort(e.program_id, e.cohort_id)
            else:
                existing = instances.find_by_enrollment(e.program_id, e.id)
            if existing:
                continue
            missing += 1
            if dry_run:
                print(f'Would create instance for enrollment {e.id} (program {e.program_id})')
                continue
            if e.cohort_id is not None:
                instance_id = svc.ensure_cohort_instance_exists(e.program_id, e.cohort_id, e.organization_id)
            else:
                instance_id = svc.ensure_enrollment_instance_exists(e.program_id, e.id, e.organization_id)
            if instance_id is None:
                failed += 1
                print(f'Failed to ensure instance for enrollment {e.id}')
            else:
                ensured += 1
                print(f'Enrollment {e.id}: instance {instance_id}')
        print(f'Enrollments scanned: {len(enrollments)}, missing {missing}, created {ensured}, failed {failed}')
        return {'scanned': len(enrollments), 'missing': missing, 'created': ensured, 'failed': failed}


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--org', help='Only backfill enrollments of this organization')
    parser.add_argument('--dry-run', action='store_true', help='Report missing instances without creating them')
    args = parser.parse_args()
    main(org=args.org, dry_run=args.dry_run)
