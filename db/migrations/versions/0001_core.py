from __future__ import annotations

from alembic import op

revision = "0001_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS statements (
            id VARCHAR(32) PRIMARY KEY,
            account_id TEXT,
            account_name TEXT NOT NULL,
            bank_name TEXT,
            currency VARCHAR(8) NOT NULL DEFAULT 'USD',
            month SMALLINT NOT NULL CHECK (month BETWEEN 1 AND 12),
            year SMALLINT NOT NULL,
            source_path TEXT NOT NULL,
            source_mime_type TEXT NOT NULL,
            source_filename TEXT,
            source_size BIGINT,
            status VARCHAR(16) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
            processing_errors JSON NOT NULL DEFAULT '[]',
            processing_warnings JSON NOT NULL DEFAULT '[]',
            ocr_provider TEXT,
            pages INTEGER,
            extracted_data JSON,
            extracted_at TIMESTAMPTZ,
            transactions_found INTEGER NOT NULL DEFAULT 0,
            transactions_imported INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )
    # Stale sweep scans processing rows by age
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_statements_processing ON statements (updated_at) WHERE status = 'processing';"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS statement_transactions (
            id VARCHAR(32) PRIMARY KEY,
            statement_id VARCHAR(32) NOT NULL REFERENCES statements(id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            txn_date DATE NOT NULL,
            description TEXT NOT NULL,
            amount_minor BIGINT NOT NULL,
            direction VARCHAR(8) NOT NULL CHECK (direction IN ('debit', 'credit')),
            category TEXT,
            balance_minor BIGINT,
            original_amount_minor BIGINT,
            corrected_amount_minor BIGINT,
            flags JSON NOT NULL DEFAULT '[]',
            confidence DOUBLE PRECISION NOT NULL DEFAULT 0.8,
            UNIQUE (statement_id, position)
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_statement_transactions_statement_id ON statement_transactions (statement_id);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS statement_transactions;")
    op.execute("DROP TABLE IF EXISTS statements;")
