"""Data ingestion logic for CSV files."""
import pandas as pd
import os
from pathlib import Path
from sqlalchemy.orm import Session
from datetime import datetime
from decimal import Decimal
from typing import Optional
from crm_segmentation.models import Organization, Customer, Activity
from crm_segmentation.config import settings
from crm_segmentation.errors import ValidationError
from crm_segmentation.logging_config import get_logger

logger = get_logger(__name__)

TRUE_VALUES = {'true', '1', 'yes', 'y', 't'}


def parse_date(date_str: Optional[str]) -> Optional[datetime]:
    """Parse date string to datetime object."""
    if date_str is None or pd.isna(date_str) or date_str == '':
        return None

    # Try common date formats
    for fmt in ['%Y-%m-%d', '%Y-%m-%d %H:%M:%S', '%Y-%m-%dT%H:%M:%S', '%d/%m/%Y', '%m/%d/%Y']:
        try:
            return datetime.strptime(str(date_str).strip(), fmt)
        except ValueError:
            continue

    # If all fail, try pandas parser
    try:
        parsed = pd.to_datetime(date_str)
    except (ValueError, TypeError):
        return None

    # Stored columns are naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert('UTC').tz_localize(None)
    return parsed.to_pydatetime()


def parse_bool(value) -> bool:
    if value is None or pd.isna(value):
        return False
    return str(value).strip().lower() in TRUE_VALUES


def _optional_str(row, df, column: str) -> Optional[str]:
    if column in df.columns and pd.notna(row.get(column)):
        return str(row[column]).strip()
    return None


def _read_csv(csv_path, default_name: str, required_cols: list) -> pd.DataFrame:
    if csv_path is None:
        csv_path = os.path.join(settings.DATA_DIR, default_name)

    csv_path = Path(csv_path)
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV not found: {csv_path}")

    df = pd.read_csv(csv_path)

    missing = [col for col in required_cols if col not in df.columns]
    if missing:
        raise ValidationError(f"CSV must contain columns: {', '.join(missing)}")
    return df


def ingest_organizations_from_csv(db: Session, csv_path: Optional[str] = None) -> int:
    """
    Ingest organizations from CSV file.

    Expected CSV columns: id (required), name (required)

    Returns:
        Number of organizations created
    """
    df = _read_csv(csv_path, "organizations.csv", ['id', 'name'])

    count = 0
    for _, row in df.iterrows():
        organization_id = int(row['id'])
        existing = db.get(Organization, organization_id)
        if existing:
            existing.name = str(row['name']).strip()
        else:
            db.add(Organization(id=organization_id, name=str(row['name']).strip()))
            count += 1

    db.commit()
    return count


def ingest_customers_from_csv(db: Session, csv_path: Optional[str] = None) -> int:
    """
    Ingest customers from CSV file, upserting by (organization_id, email).

    Expected CSV columns:
    - organization_id, email (required)
    - phone, first_name, last_name (optional)
    - total_spent, order_count, last_order_at (optional commerce facts)
    - loyalty_member, loyalty_points, loyalty_tier (optional loyalty facts)

    Args:
        db: Database session
        csv_path: Path to CSV file. If None, uses settings.DATA_DIR/customers.csv

    Returns:
        Number of customers created
    """
    df = _read_csv(csv_path, "customers.csv", ['organization_id', 'email'])

    count = 0
    for _, row in df.iterrows():
        email = _optional_str(row, df, 'email')
        if not email:
            continue
        organization_id = int(row['organization_id'])

        values = {
            'phone': _optional_str(row, df, 'phone'),
            'first_name': _optional_str(row, df, 'first_name'),
            'last_name': _optional_str(row, df, 'last_name'),
            'total_spent': Decimal(str(row['total_spent'])) if 'total_spent' in df.columns and pd.notna(row.get('total_spent')) else Decimal('0.00'),
            'order_count': int(row['order_count']) if 'order_count' in df.columns and pd.notna(row.get('order_count')) else 0,
            'last_order_at': parse_date(row.get('last_order_at')) if 'last_order_at' in df.columns else None,
            'loyalty_member': parse_bool(row.get('loyalty_member')) if 'loyalty_member' in df.columns else False,
            'loyalty_points': int(row['loyalty_points']) if 'loyalty_points' in df.columns and pd.notna(row.get('loyalty_points')) else 0,
            'loyalty_tier': _optional_str(row, df, 'loyalty_tier'),
        }

        existing = db.query(Customer).filter(
            Customer.organization_id == organization_id,
            Customer.email == email
        ).first()

        if existing:
            for key, value in values.items():
                setattr(existing, key, value)
        else:
            db.add(Customer(organization_id=organization_id, email=email, **values))
            count += 1

    db.commit()
    return count


def ingest_activities_from_csv(db: Session, csv_path: Optional[str] = None) -> int:
    """
    Ingest activities from CSV file.

    Expected CSV columns: organization_id, email, type, created_at.
    Rows whose customer is unknown are skipped.

    Returns:
        Number of activities created
    """
    df = _read_csv(csv_path, "activities.csv", ['organization_id', 'email', 'type', 'created_at'])

    count = 0
    skipped = 0
    for _, row in df.iterrows():
        customer = db.query(Customer).filter(
            Customer.organization_id == int(row['organization_id']),
            Customer.email == str(row['email']).strip()
        ).first()
        created_at = parse_date(row['created_at'])
        if customer is None or created_at is None:
            skipped += 1
            continue

        db.add(Activity(
            customer_id=customer.id,
            type=str(row['type']).strip().upper(),
            created_at=created_at
        ))
        count += 1

    db.commit()
    if skipped:
        logger.warning("Skipped activity rows", extra={'skipped': skipped})
    return count


def ingest_all(db: Session) -> dict:
    """
    Ingest all data from CSV files.

    Args:
        db: Database session

    Returns:
        Dictionary with ingestion results
    """
    results = {
        'organizations_ingested': 0,
        'customers_ingested': 0,
        'activities_ingested': 0,
        'errors': []
    }

    steps = [
        ('organizations_ingested', ingest_organizations_from_csv, "Organization"),
        ('customers_ingested', ingest_customers_from_csv, "Customer"),
        ('activities_ingested', ingest_activities_from_csv, "Activity"),
    ]
    for key, ingest, label in steps:
        try:
            results[key] = ingest(db)
        except Exception as e:
            db.rollback()
            results['errors'].append(f"{label} ingestion error: {str(e)}")

    return results
