"""Full pipeline orchestration: (ingest) -> recalculate -> assign segments."""
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
from crm_segmentation.db import SessionLocal
from crm_segmentation import ingestion
from crm_segmentation.logging_config import get_logger
from crm_segmentation.models import Organization
from crm_segmentation.segmentation import recalculate_all_customers
from crm_segmentation.segments import assign_to_segments

logger = get_logger(__name__)


def run_organization(db: Session, organization_id: int, now: Optional[datetime] = None) -> dict:
    """
    Recalculate every customer of an organization, then assign segments.

    Returns:
        Dictionary with processed/failed counts and per-segment statistics
    """
    if now is None:
        now = datetime.now()

    recalculation = recalculate_all_customers(db, organization_id, now)
    assignments = assign_to_segments(db, organization_id, now=now)

    return {
        'organization_id': organization_id,
        'processed': recalculation.processed,
        'failed': recalculation.failed,
        'segments': [
            {
                'segment_id': a.segment_id,
                'name': a.name,
                'segment_type': a.segment_type,
                'customer_count': a.customer_count,
                'avg_ltv': a.avg_ltv,
                'avg_engagement': a.avg_engagement,
            }
            for a in assignments
        ],
    }


def _run_status(results: list) -> str:
    """'success' only when every organization and every customer went through."""
    if all(r['success'] and not r.get('failed') for r in results):
        return 'success'
    return 'partial_success'


def run_all_organizations(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Run segmentation for every organization.

    A failing organization is rolled back and reported with
    success=False; the others still run.
    """
    if now is None:
        now = datetime.now()

    organizations = db.query(Organization.id, Organization.name).order_by(Organization.id).all()

    results = []
    for org in organizations:
        try:
            org_result = run_organization(db, org.id, now)
            results.append({
                'organization_id': org.id,
                'organization_name': org.name,
                'processed': org_result['processed'],
                'failed': org_result['failed'],
                'success': True,
            })
        except Exception:
            db.rollback()
            logger.exception("Organization segmentation failed", extra={'organization_id': org.id})
            results.append({
                'organization_id': org.id,
                'organization_name': org.name,
                'error': "Processing failed",
                'success': False,
            })

    return {
        'status': _run_status(results),
        'organizations_processed': len(organizations),
        'total_customers_processed': sum(r.get('processed', 0) for r in results),
        'total_failed': sum(r.get('failed', 0) for r in results),
        'results': results,
        'timestamp': now,
    }


def run_full_pipeline(
    organization_id: Optional[int] = None,
    ingest: bool = False,
    now: Optional[datetime] = None
) -> dict:
    """
    Run the complete pipeline with its own session.

    Args:
        organization_id: Limit the run to one organization (default: all)
        ingest: Import CSV files from settings.DATA_DIR first
        now: Reference time (default: now)

    Returns:
        Dictionary with pipeline execution results
    """
    db = SessionLocal()
    try:
        ingestion_results = ingestion.ingest_all(db) if ingest else {}

        if organization_id is not None:
            org_result = run_organization(db, organization_id, now)
            org_result['success'] = True
            results = {
                'status': _run_status([org_result]),
                'organizations_processed': 1,
                'total_customers_processed': org_result['processed'],
                'total_failed': org_result['failed'],
                'results': [org_result],
                'timestamp': now or datetime.now(),
            }
        else:
            results = run_all_organizations(db, now)

        results['ingestion'] = ingestion_results
        return results
    finally:
        db.close()


if __name__ == "__main__":
    """CLI entrypoint for running the pipeline."""
    import sys
    from crm_segmentation.db import init_db

    organization_id = None
    ingest = False

    for arg in sys.argv[1:]:
        if arg.startswith('--organization-id='):
            organization_id = int(arg.split('=')[1])
        elif arg == '--ingest':
            ingest = True

    init_db()
    results = run_full_pipeline(organization_id=organization_id, ingest=ingest)

    print("Pipeline execution completed:")
    print(f"Status: {results['status']}")
    print(f"Organizations: {results['organizations_processed']}")
    print(f"Customers processed: {results['total_customers_processed']}")
    print(f"Customers failed: {results['total_failed']}")
    if results['ingestion']:
        print(f"Ingestion: {results['ingestion']}")
    for result in results['results']:
        print(f"  {result}")
