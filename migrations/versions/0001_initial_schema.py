"""templates, participants and certificates"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'templates',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('original_name', sa.String(length=255), nullable=False),
        sa.Column('stored_name', sa.String(length=255), nullable=False),
        sa.Column('mime_type', sa.String(length=100), nullable=False),
        sa.Column('file_size', sa.Integer, nullable=False),
        sa.Column('stored_path', sa.String(length=500), nullable=False),
        sa.Column('text_x_ratio', sa.Float),
        sa.Column('text_y_ratio', sa.Float),
        sa.Column('text_x_pixels', sa.Float),
        sa.Column('text_y_pixels', sa.Float),
        sa.Column('canvas_width', sa.Float),
        sa.Column('canvas_height', sa.Float),
        sa.Column('text_font_size', sa.Integer),
        sa.Column(
            'text_align',
            sa.Enum('left', 'center', 'right', name='template_text_align'),
            server_default='center',
        ),
        sa.Column('text_color_hex', sa.String(length=7)),
        sa.Column('uploaded_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_templates_uploaded_at', 'templates', ['uploaded_at'])

    op.create_table(
        'participants',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('mes_id', sa.String(length=100)),
        sa.Column('extra_data', sa.JSON),
        sa.Column('source', sa.String(length=50), server_default='manual'),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )

    op.create_table(
        'certificates',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('participant_id', sa.Integer, sa.ForeignKey('participants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('template_id', sa.Integer, sa.ForeignKey('templates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('pdf_path', sa.String(length=500)),
        sa.Column(
            'status',
            sa.Enum('pending', 'generated', 'failed', name='certificate_status'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column(
            'delivery_status',
            sa.Enum('pending', 'sent', 'failed', name='certificate_delivery_status'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('delivery_message', sa.Text),
        sa.Column('sent_at', sa.DateTime),
        sa.Column('last_error', sa.Text),
        sa.Column('is_hidden', sa.Boolean, nullable=False, server_default=sa.text('false')),
        sa.Column('revoked_at', sa.DateTime),
        sa.Column('verification_url', sa.String(length=500)),
        sa.Column('qr_code_path', sa.String(length=500)),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_unique_constraint(
        'uix_certificate_participant_template',
        'certificates',
        ['participant_id', 'template_id'],
    )


def downgrade() -> None:
    op.drop_constraint('uix_certificate_participant_template', 'certificates', type_='unique')
    op.drop_table('certificates')
    op.drop_table('participants')
    op.drop_index('ix_templates_uploaded_at', table_name='templates')
    op.drop_table('templates')
    sa.Enum(name='certificate_delivery_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='certificate_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='template_text_align').drop(op.get_bind(), checkfirst=True)
