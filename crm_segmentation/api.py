"""FastAPI endpoints for customer segmentation."""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Header, HTTPException, Query, Request
from fastapi.responses import StreamingResponse, HTMLResponse, JSONResponse, Response
from sqlalchemy.orm import Session
from sqlalchemy import func, text
from typing import Optional
import csv
import io
from crm_segmentation.db import get_db, init_db
from crm_segmentation import visualization
from crm_segmentation.config import settings
from crm_segmentation.errors import (
    AppError,
    CustomerNotFoundError,
    NotFoundError,
    SegmentNotFoundError,
    ValidationError,
    to_response,
)
from crm_segmentation.logging_config import get_logger
from crm_segmentation.models import Customer, Organization, Segment, segment_customers
from crm_segmentation.pipeline.run_full import run_organization, run_all_organizations
from crm_segmentation.schemas import (
    HealthResponse,
    CustomerDetailResponse,
    SegmentationSnapshotResponse,
    SegmentResponse,
    SegmentListResponse,
    SegmentAssignmentResponse,
    SegmentAssignmentStats,
    SegmentInsightResponse,
    RecalculationResponse,
    CronRunResponse,
)
from crm_segmentation.segmentation import update_customer_segmentation
from crm_segmentation.segments import assign_to_segments, segment_insight

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield


app = FastAPI(title="Customer Segmentation API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=to_response(exc))


def get_organization_or_404(db: Session, organization_id: int) -> Organization:
    organization = db.get(Organization, organization_id)
    if organization is None:
        raise NotFoundError(f"Organization {organization_id} not found")
    return organization


def get_segment_or_404(db: Session, segment_id: int) -> Segment:
    segment = db.get(Segment, segment_id)
    if segment is None:
        raise SegmentNotFoundError(segment_id)
    return segment


@app.get("/health", response_model=HealthResponse)
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint with basic counts."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"
        return HealthResponse(status="degraded", database=db_status)

    total_customers = db.query(func.count(Customer.id)).scalar()
    total_segments = db.query(func.count(Segment.id)).scalar()
    last_segmented = db.query(func.max(Customer.segmented_at)).scalar()

    # HealthResponse stays minimal; the counts ride along as extra JSON fields.
    base = HealthResponse(status="ok", database=db_status)
    return JSONResponse(content={
        **base.model_dump(),
        "total_customers": total_customers,
        "total_segments": total_segments,
        "last_segmented_at": last_segmented.isoformat() if last_segmented else None,
    })


@app.post(
    "/organizations/{organization_id}/segmentation/recalculate",
    response_model=RecalculationResponse
)
async def recalculate_organization(organization_id: int, db: Session = Depends(get_db)):
    """Recalculate every customer's segmentation, then assign AI segments."""
    get_organization_or_404(db, organization_id)

    result = run_organization(db, organization_id)

    return RecalculationResponse(
        organization_id=organization_id,
        processed=result['processed'],
        failed=result['failed'],
        segments=[SegmentAssignmentStats(**s) for s in result['segments']],
        message=f"Successfully recalculated segmentation for {result['processed']} customers."
    )


@app.post("/organizations/{organization_id}/segments/assign", response_model=SegmentAssignmentResponse)
async def assign_segments(organization_id: int, db: Session = Depends(get_db)):
    """Assign already-tagged customers to the AI segments."""
    get_organization_or_404(db, organization_id)

    assignments = assign_to_segments(db, organization_id)

    return SegmentAssignmentResponse(
        organization_id=organization_id,
        segments=[
            SegmentAssignmentStats(
                segment_id=a.segment_id,
                name=a.name,
                segment_type=a.segment_type,
                customer_count=a.customer_count,
                avg_ltv=a.avg_ltv,
                avg_engagement=a.avg_engagement,
            )
            for a in assignments
        ]
    )


@app.get("/organizations/{organization_id}/segments", response_model=SegmentListResponse)
async def list_segments(organization_id: int, db: Session = Depends(get_db)):
    """List an organization's segments with cached statistics."""
    get_organization_or_404(db, organization_id)

    segments = db.query(Segment).filter(
        Segment.organization_id == organization_id
    ).order_by(Segment.id).all()

    return SegmentListResponse(
        organization_id=organization_id,
        segments=[SegmentResponse.model_validate(s) for s in segments]
    )


@app.post("/customers/{customer_id}/segmentation", response_model=SegmentationSnapshotResponse)
async def recalculate_customer(customer_id: int, db: Session = Depends(get_db)):
    """Recalculate and store one customer's segmentation snapshot."""
    snapshot = update_customer_segmentation(db, customer_id)

    return SegmentationSnapshotResponse(
        customer_id=snapshot.customer_id,
        rfm_recency_days=snapshot.rfm_recency_days,
        rfm_frequency_score=snapshot.rfm_frequency_score,
        rfm_monetary_score=snapshot.rfm_monetary_score,
        rfm_score=snapshot.rfm_score,
        engagement_score=snapshot.engagement_score,
        predicted_ltv=snapshot.predicted_ltv,
        churn_risk=snapshot.churn_risk.value,
        segment_tags=sorted(snapshot.segment_tags),
    )


@app.get("/customers/{customer_id}", response_model=CustomerDetailResponse)
async def get_customer(customer_id: int, db: Session = Depends(get_db)):
    """Get customer details with the stored segmentation snapshot."""
    customer = db.get(Customer, customer_id)
    if not customer:
        raise CustomerNotFoundError(customer_id)
    return CustomerDetailResponse.model_validate(customer)


@app.get("/segments/{segment_id}/customers")
async def get_segment_customers(
    segment_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    """Get paginated list of customers in a segment."""
    segment = get_segment_or_404(db, segment_id)

    offset = (page - 1) * page_size
    customers = db.query(Customer).join(
        segment_customers,
        segment_customers.c.customer_id == Customer.id
    ).filter(
        segment_customers.c.segment_id == segment_id
    ).order_by(Customer.id).offset(offset).limit(page_size).all()

    return {
        'segment_id': segment.id,
        'segment_name': segment.name,
        'page': page,
        'page_size': page_size,
        'customers': [
            {
                'customer_id': c.id,
                'email': c.email,
                'rfm_score': c.rfm_score,
                'engagement_score': c.engagement_score,
                'predicted_ltv': float(c.predicted_ltv or 0),
                'churn_risk': c.churn_risk,
                'segment_tags': c.segment_tags or [],
            }
            for c in customers
        ]
    }


@app.get("/segments/{segment_id}/insight", response_model=SegmentInsightResponse)
async def get_segment_insight(segment_id: int, db: Session = Depends(get_db)):
    """Rule-based cohort summary for a segment's members."""
    return SegmentInsightResponse(**segment_insight(db, segment_id))


@app.get("/export/segments/{segment_id}")
async def export_segment(segment_id: int, db: Session = Depends(get_db)):
    """Export segment customers as CSV."""
    segment = get_segment_or_404(db, segment_id)

    customers = sorted(segment.customers, key=lambda c: c.id)
    if not customers:
        raise NotFoundError(f"No customers found in segment '{segment.name}'")

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(['customer_id', 'email', 'first_name', 'last_name', 'rfm_score', 'churn_risk', 'segment_name'])
    for customer in customers:
        writer.writerow([
            customer.id,
            customer.email or '',
            customer.first_name or '',
            customer.last_name or '',
            customer.rfm_score or '',
            customer.churn_risk or '',
            segment.name
        ])

    output.seek(0)

    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=segment_{segment.segment_type.lower()}.csv"
        }
    )


@app.post("/cron/segmentation", response_model=CronRunResponse)
async def cron_segmentation(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """Daily job: recalculate and assign segments for every organization."""
    if not settings.CRON_SECRET or authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")

    results = run_all_organizations(db)
    logger.info(
        "Cron segmentation finished",
        extra={
            'organizations': results['organizations_processed'],
            'customers': results['total_customers_processed'],
            'failed': results['total_failed'],
        }
    )
    return CronRunResponse(**results)


@app.get("/organizations/{organization_id}/dashboard")
async def dashboard(organization_id: int, db: Session = Depends(get_db)):
    """Simple HTML dashboard with segment statistics."""
    organization = get_organization_or_404(db, organization_id)
    total_customers = db.query(func.count(Customer.id)).filter(
        Customer.organization_id == organization_id
    ).scalar()
    segments = db.query(Segment).filter(
        Segment.organization_id == organization_id
    ).order_by(Segment.id).all()

    if not segments:
        html = """
        <!DOCTYPE html>
        <html>
        <head><title>Segmentation Dashboard</title></head>
        <body>
            <h1>%s - Segmentation Dashboard</h1>
            <p>No segments found. Please run the segmentation first.</p>
            <p><strong>Total customers:</strong> %d</p>
            <p><a href="/docs">API Documentation</a></p>
        </body>
        </html>
        """ % (organization.name, total_customers or 0)
        return HTMLResponse(content=html)

    rows = "".join(
        f"""
                <tr>
                    <td>{s.name}</td>
                    <td>{s.segment_type}</td>
                    <td>{s.customer_count}</td>
                    <td>{s.avg_lifetime_value:.2f}</td>
                    <td>{s.avg_engagement:.1f}</td>
                    <td>{s.last_calculated.strftime('%Y-%m-%d %H:%M:%S') if s.last_calculated else '-'}</td>
                </tr>
        """
        for s in segments
    )

    html = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <title>Segmentation Dashboard</title>
        <style>
            body {{ font-family: Arial, sans-serif; margin: 40px; }}
            table {{ border-collapse: collapse; width: 100%; margin-top: 20px; }}
            th, td {{ border: 1px solid #ddd; padding: 12px; text-align: left; }}
            th {{ background-color: #4CAF50; color: white; }}
            tr:nth-child(even) {{ background-color: #f2f2f2; }}
        </style>
    </head>
    <body>
        <h1>{organization.name} - Segmentation Dashboard</h1>
        <p><strong>Total customers:</strong> {total_customers or 0}</p>
        <p>
            <a href="/docs">API Documentation</a> |
            <a href="/visualization/interactive?organization_id={organization_id}">View Interactive Plot</a>
        </p>
        <img src="/visualization/plot?organization_id={organization_id}" alt="Engagement vs Predicted LTV" style="max-width: 100%;">
        <h2>Segments</h2>
        <table>
            <thead>
                <tr>
                    <th>Segment</th>
                    <th>Type</th>
                    <th>Customers</th>
                    <th>Avg Predicted LTV</th>
                    <th>Avg Engagement</th>
                    <th>Last Calculated</th>
                </tr>
            </thead>
            <tbody>{rows}
            </tbody>
        </table>
    </body>
    </html>
    """
    return HTMLResponse(content=html)


def _check_plot_type(plot_type: str):
    if plot_type not in visualization.PLOT_AXES:
        raise ValidationError(
            f"Unknown plot_type '{plot_type}'. Use one of: {', '.join(visualization.PLOT_AXES)}"
        )


@app.get("/visualization/plot")
async def get_plot(
    organization_id: int = Query(...),
    plot_type: str = Query("engagement_ltv", description="engagement_ltv, recency_ltv or recency_engagement"),
    db: Session = Depends(get_db)
):
    """Get a matplotlib PNG plot of customers coloured by churn risk."""
    _check_plot_type(plot_type)
    plot_buffer = visualization.create_matplotlib_plot(db, organization_id, plot_type)
    return Response(
        content=plot_buffer.read(),
        media_type="image/png",
        headers={
            "Content-Disposition": f"inline; filename=segmentation_{plot_type}.png"
        }
    )


@app.get("/visualization/interactive")
async def get_interactive_plot(
    organization_id: int = Query(...),
    plot_type: str = Query("engagement_ltv", description="engagement_ltv, recency_ltv or recency_engagement"),
    db: Session = Depends(get_db)
):
    """Get an interactive Plotly HTML plot of customers coloured by churn risk."""
    _check_plot_type(plot_type)
    html_content = visualization.create_plotly_plot(db, organization_id, plot_type)
    return HTMLResponse(content=html_content)
