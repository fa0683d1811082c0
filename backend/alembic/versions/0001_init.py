"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

NOW = sa.text("(CURRENT_TIMESTAMP)")

# The workflow engine writes results directly to these tables; the trigger
# relays a slim copy of each change to LISTEN row_changes.
TRACKED_TABLES = ("scan_jobs", "scan_results", "diagnosis_reports", "simulation_results")

NOTIFY_FUNCTION = """
CREATE OR REPLACE FUNCTION notify_row_change() RETURNS trigger AS $$
DECLARE
    new_slim jsonb;
    old_slim jsonb;
BEGIN
    IF TG_OP <> 'DELETE' THEN
        new_slim := jsonb_strip_nulls(jsonb_build_object(
            'id', NEW.id,
            'status', to_jsonb(NEW) ->> 'status',
            'user_id', to_jsonb(NEW) ->> 'user_id',
            'job_id', to_jsonb(NEW) ->> 'job_id',
            'scan_result_id', to_jsonb(NEW) ->> 'scan_result_id',
            'diagnosis_id', to_jsonb(NEW) ->> 'diagnosis_id'
        ));
    END IF;
    IF TG_OP <> 'INSERT' THEN
        old_slim := jsonb_strip_nulls(jsonb_build_object(
            'id', OLD.id,
            'status', to_jsonb(OLD) ->> 'status',
            'user_id', to_jsonb(OLD) ->> 'user_id'
        ));
    END IF;
    PERFORM pg_notify('row_changes', json_build_object(
        'table', TG_TABLE_NAME,
        'type', TG_OP,
        'record', new_slim,
        'old_record', old_slim
    )::text);
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    existing_tables = set(_inspector().get_table_names())

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("full_name", sa.String(), nullable=True),
            sa.Column("credits_balance", sa.Integer(), nullable=True, server_default="0"),
            sa.Column("monthly_free_quota", sa.Integer(), nullable=True),
            sa.Column("tier_level", sa.String(), nullable=True),
            sa.Column("last_reset_date", sa.Date(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW),
        )
        op.create_index("ix_profiles_id", "profiles", ["id"])
        op.create_index("ix_profiles_email", "profiles", ["email"])

    if "scan_jobs" not in existing_tables:
        op.create_table(
            "scan_jobs",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("brand_name", sa.String(), nullable=False),
            sa.Column("search_query", sa.Text(), nullable=False),
            sa.Column("competitors", sa.JSON(), nullable=True),
            sa.Column("selected_models", sa.JSON(), nullable=True),
            sa.Column("target_region", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True, server_default="queued"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )
        op.create_index("ix_scan_jobs_user_id", "scan_jobs", ["user_id"])
        op.create_index("ix_scan_jobs_status", "scan_jobs", ["status"])

    if "scan_results" not in existing_tables:
        op.create_table(
            "scan_results",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("job_id", sa.String(), sa.ForeignKey("scan_jobs.id", ondelete="CASCADE"), nullable=False),
            sa.Column("model_name", sa.String(), nullable=False),
            sa.Column("avs_score", sa.Integer(), nullable=True),
            sa.Column("spi_score", sa.Integer(), nullable=True),
            sa.Column("sentiment_score", sa.Integer(), nullable=True),
            sa.Column("rank_position", sa.Integer(), nullable=True),
            sa.Column("is_visible", sa.Boolean(), nullable=True),
            sa.Column("citations", sa.JSON(), nullable=True),
            sa.Column("competitors_mentioned", sa.Text(), nullable=True),
            sa.Column("raw_response_text", sa.Text(), nullable=True),
            sa.Column("diag_attribution_report", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )
        op.create_index("ix_scan_results_job_id", "scan_results", ["job_id"])

    if "diagnosis_reports" not in existing_tables:
        op.create_table(
            "diagnosis_reports",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column(
                "scan_result_id",
                sa.String(),
                sa.ForeignKey("scan_results.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("job_id", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True, server_default="queued"),
            sa.Column("industry", sa.String(), nullable=True),
            sa.Column("diagnostic_model", sa.String(), nullable=True),
            sa.Column("root_cause_analysis", sa.Text(), nullable=True),
            sa.Column("missing_geo_pillars", sa.Text(), nullable=True),
            sa.Column("optimization_suggestions", sa.Text(), nullable=True),
            sa.Column("reasoning_trace", sa.Text(), nullable=True),
            sa.Column("citations", sa.Text(), nullable=True),
            sa.Column("citation_authority_audit", sa.JSON(), nullable=True),
            sa.Column("faithfulness_score", sa.Float(), nullable=True),
            sa.Column("tokens_used", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )
        op.create_index("ix_diagnosis_reports_scan_result_id", "diagnosis_reports", ["scan_result_id"])
        op.create_index("ix_diagnosis_reports_job_id", "diagnosis_reports", ["job_id"])
        op.create_index("ix_diagnosis_reports_status", "diagnosis_reports", ["status"])

    if "simulation_results" not in existing_tables:
        op.create_table(
            "simulation_results",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column(
                "diagnosis_id",
                sa.String(),
                sa.ForeignKey("diagnosis_reports.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("job_id", sa.String(), nullable=True),
            sa.Column("applied_strategy_id", sa.String(), nullable=False),
            sa.Column("status", sa.String(), nullable=True, server_default="queued"),
            sa.Column("optimized_content_snippet", sa.Text(), nullable=True),
            sa.Column("predicted_rank_change", sa.Text(), nullable=True),
            sa.Column("improvement_analysis", sa.Text(), nullable=True),
            sa.Column("strategies_used", sa.JSON(), nullable=True),
            sa.Column("model_outputs", sa.JSON(), nullable=True),
            sa.Column("si_scores", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )
        op.create_index("ix_simulation_results_diagnosis_id", "simulation_results", ["diagnosis_id"])
        op.create_index("ix_simulation_results_job_id", "simulation_results", ["job_id"])
        op.create_index("ix_simulation_results_status", "simulation_results", ["status"])

    if "credit_transactions" not in existing_tables:
        op.create_table(
            "credit_transactions",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("balance_after", sa.Integer(), nullable=False),
            sa.Column("transaction_type", sa.String(), nullable=False),
            sa.Column("reference_type", sa.String(), nullable=True),
            sa.Column("reference_id", sa.String(), nullable=True),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )
        op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"])
        op.create_index("ix_credit_transactions_transaction_type", "credit_transactions", ["transaction_type"])
        op.create_index("ix_credit_transactions_created_at", "credit_transactions", ["created_at"])

    if "top_up_requests" not in existing_tables:
        op.create_table(
            "top_up_requests",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("amount_cny", sa.Integer(), nullable=False),
            sa.Column("credits_requested", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(), nullable=True, server_default="pending"),
            sa.Column("notes", sa.String(), nullable=True),
            sa.Column("transaction_id", sa.String(), nullable=True),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )
        op.create_index("ix_top_up_requests_user_id", "top_up_requests", ["user_id"])
        op.create_index("ix_top_up_requests_status", "top_up_requests", ["status"])

    if "contact_inquiries" not in existing_tables:
        op.create_table(
            "contact_inquiries",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("company", sa.String(), nullable=False),
            sa.Column("website", sa.String(), nullable=True),
            sa.Column("phone", sa.String(), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("status", sa.String(), nullable=True, server_default="new"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW),
        )

    if op.get_bind().dialect.name == "postgresql":
        op.execute(sa.text(NOTIFY_FUNCTION))
        for table in TRACKED_TABLES:
            op.execute(sa.text(f"DROP TRIGGER IF EXISTS {table}_notify ON {table}"))
            op.execute(
                sa.text(
                    f"CREATE TRIGGER {table}_notify AFTER INSERT OR UPDATE OR DELETE ON {table} "
                    "FOR EACH ROW EXECUTE FUNCTION notify_row_change()"
                )
            )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        for table in TRACKED_TABLES:
            op.execute(sa.text(f"DROP TRIGGER IF EXISTS {table}_notify ON {table}"))
        op.execute(sa.text("DROP FUNCTION IF EXISTS notify_row_change()"))

    existing_tables = set(_inspector().get_table_names())
    for table in (
        "contact_inquiries",
        "top_up_requests",
        "credit_transactions",
        "simulation_results",
        "diagnosis_reports",
        "scan_results",
        "scan_jobs",
        "profiles",
    ):
        if table in existing_tables:
            op.drop_table(table)
