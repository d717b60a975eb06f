"""Visualization utilities for the customer segmentation snapshot."""
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
import plotly.graph_objects as go
import plotly.express as px
from sqlalchemy.orm import Session
import io
from crm_segmentation.models import Customer
from crm_segmentation.scoring import ChurnRisk


CHURN_COLORS = {
    ChurnRisk.LOW.value: '#4CAF50',
    ChurnRisk.MEDIUM.value: '#FFC107',
    ChurnRisk.HIGH.value: '#F44336',
}

# plot_type -> (x field, x label, y field, y label)
PLOT_AXES = {
    "engagement_ltv": ('engagement_score', "Engagement Score", 'predicted_ltv', "Predicted LTV ($)"),
    "recency_ltv": ('rfm_recency_days', "Days Since Last Order", 'predicted_ltv', "Predicted LTV ($)"),
    "recency_engagement": ('rfm_recency_days', "Days Since Last Order", 'engagement_score', "Engagement Score"),
}
EMPTY_MESSAGE = "No segmented customers available. Please run the segmentation first."


def get_segmentation_data(db: Session, organization_id: int):
    """
    Get segmented customers of an organization for plotting.

    Returns:
        List of dicts with customer_id, email, rfm_score, rfm_recency_days,
        engagement_score, predicted_ltv and churn_risk
    """
    customers = db.query(Customer).filter(
        Customer.organization_id == organization_id,
        Customer.segmented_at.isnot(None)
    ).order_by(Customer.id).all()

    return [
        {
            'customer_id': c.id,
            'email': c.email or '',
            'rfm_score': c.rfm_score,
            'rfm_recency_days': c.rfm_recency_days,
            'engagement_score': c.engagement_score,
            'predicted_ltv': float(c.predicted_ltv or 0),
            'churn_risk': c.churn_risk,
        }
        for c in customers
    ]


def create_matplotlib_plot(db: Session, organization_id: int, plot_type: str = "engagement_ltv") -> io.BytesIO:
    """
    Create a matplotlib scatter plot of customers coloured by churn risk.

    Returns:
        BytesIO buffer containing PNG image
    """
    data = get_segmentation_data(db, organization_id)

    if not data:
        fig, ax = plt.subplots(figsize=(10, 6))
        ax.text(0.5, 0.5, EMPTY_MESSAGE.replace(". ", ".\n"), ha='center', va='center', fontsize=14)
        ax.set_xticks([])
        ax.set_yticks([])
        buf = io.BytesIO()
        plt.savefig(buf, format='png', bbox_inches='tight', dpi=100)
        plt.close(fig)
        buf.seek(0)
        return buf

    x_field, x_label, y_field, y_label = PLOT_AXES[plot_type]

    fig, ax = plt.subplots(figsize=(12, 8))
    for risk, color in CHURN_COLORS.items():
        points = [d for d in data if d['churn_risk'] == risk]
        if not points:
            continue
        ax.scatter(
            [d[x_field] for d in points],
            [d[y_field] for d in points],
            c=color,
            label=f"{risk} churn risk",
            alpha=0.6,
            s=50
        )

    ax.set_xlabel(x_label, fontsize=12)
    ax.set_ylabel(y_label, fontsize=12)
    ax.set_title(f'Customers - {x_label} vs {y_label}', fontsize=14, fontweight='bold')
    ax.legend(bbox_to_anchor=(1.05, 1), loc='upper left')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    buf = io.BytesIO()
    plt.savefig(buf, format='png', bbox_inches='tight', dpi=100)
    plt.close(fig)
    buf.seek(0)
    return buf


def create_plotly_plot(db: Session, organization_id: int, plot_type: str = "engagement_ltv") -> str:
    """
    Create an interactive Plotly scatter plot of customers coloured by churn risk.

    Returns:
        HTML string with embedded Plotly plot
    """
    data = get_segmentation_data(db, organization_id)

    if not data:
        fig = go.Figure()
        fig.add_annotation(
            text=EMPTY_MESSAGE.replace(". ", ".<br>"),
            xref="paper", yref="paper",
            x=0.5, y=0.5, showarrow=False,
            font=dict(size=16)
        )
        return fig.to_html(include_plotlyjs='cdn')

    x_field, x_label, y_field, y_label = PLOT_AXES[plot_type]

    fig = px.scatter(
        x=[d[x_field] for d in data],
        y=[d[y_field] for d in data],
        color=[d['churn_risk'] for d in data],
        color_discrete_map=CHURN_COLORS,
        hover_name=[d['email'] or f"Customer {d['customer_id']}" for d in data],
        hover_data={
            'RFM': [d['rfm_score'] for d in data],
            'Predicted LTV ($)': [f"${d['predicted_ltv']:.2f}" for d in data],
        },
        labels={
            'x': x_label,
            'y': y_label,
            'color': 'Churn Risk'
        },
        title=f'Customers - {x_label} vs {y_label}',
        width=1000,
        height=700
    )

    fig.update_traces(marker=dict(size=8, opacity=0.7))
    fig.update_layout(
        title_font_size=16,
        title_x=0.5,
        hovermode='closest'
    )

    return fig.to_html(include_plotlyjs='cdn')
