"""initial wanikani cache schema

Revision ID: 3f9a1c2b7d10
Revises: 
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SUBJECT_TABLES = ('radicals', 'kanji', 'vocab', 'kana_vocab')


def _subject_columns() -> list:
    return [
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('aux_meanings', sa.Text(), nullable=False),
        sa.Column('created_at', sa.Text(), nullable=False),
        sa.Column('document_url', sa.Text(), nullable=False),
        sa.Column('hidden_at', sa.Text(), nullable=True),
        sa.Column('lesson_position', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('meaning_mnemonic', sa.Text(), nullable=False),
        sa.Column('meanings', sa.Text(), nullable=False),
        sa.Column('slug', sa.Text(), nullable=False),
        sa.Column('srs_id', sa.Integer(), nullable=False),
    ]


def upgrade() -> None:
    """Create subject, assignment, review, user and cache_info tables."""
    op.create_table('radicals',
        *_subject_columns(),
        sa.Column('amalgamation_subject_ids', sa.Text(), nullable=False),
        sa.Column('characters', sa.Text(), nullable=True),
        sa.Column('character_images', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('kanji',
        *_subject_columns(),
        sa.Column('characters', sa.Text(), nullable=False),
        sa.Column('amalgamation_subject_ids', sa.Text(), nullable=False),
        sa.Column('component_subject_ids', sa.Text(), nullable=False),
        sa.Column('meaning_hint', sa.Text(), nullable=True),
        sa.Column('reading_hint', sa.Text(), nullable=True),
        sa.Column('reading_mnemonic', sa.Text(), nullable=False),
        sa.Column('readings', sa.Text(), nullable=False),
        sa.Column('visually_similar_subject_ids', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('vocab',
        *_subject_columns(),
        sa.Column('characters', sa.Text(), nullable=False),
        sa.Column('component_subject_ids', sa.Text(), nullable=False),
        sa.Column('context_sentences', sa.Text(), nullable=False),
        sa.Column('parts_of_speech', sa.Text(), nullable=False),
        sa.Column('pronunciation_audios', sa.Text(), nullable=False),
        sa.Column('readings', sa.Text(), nullable=False),
        sa.Column('reading_mnemonic', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('kana_vocab',
        *_subject_columns(),
        sa.Column('characters', sa.Text(), nullable=False),
        sa.Column('context_sentences', sa.Text(), nullable=False),
        sa.Column('parts_of_speech', sa.Text(), nullable=False),
        sa.Column('pronunciation_audios', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    for table in SUBJECT_TABLES:
        op.create_index(op.f(f'ix_{table}_level'), table, ['level'], unique=False)

    op.create_table('assignments',
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('subject_id', sa.Integer(), nullable=False),
        sa.Column('subject_type', sa.Text(), nullable=False),
        sa.Column('srs_stage', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.Text(), nullable=False),
        sa.Column('unlocked_at', sa.Text(), nullable=True),
        sa.Column('started_at', sa.Text(), nullable=True),
        sa.Column('passed_at', sa.Text(), nullable=True),
        sa.Column('burned_at', sa.Text(), nullable=True),
        sa.Column('resurrected_at', sa.Text(), nullable=True),
        sa.Column('available_at', sa.Text(), nullable=True),
        sa.Column('hidden', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_assignments_subject_id'), 'assignments', ['subject_id'], unique=False)
    op.create_index(op.f('ix_assignments_available_at'), 'assignments', ['available_at'], unique=False)

    op.create_table('reviews',
        sa.Column('pk', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('id', sa.Integer(), nullable=True),
        sa.Column('assignment_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.Text(), nullable=False),
        sa.Column('incorrect_meaning_answers', sa.Integer(), nullable=False),
        sa.Column('incorrect_reading_answers', sa.Integer(), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False),
        sa.Column('available_at', sa.Text(), nullable=True),
        sa.CheckConstraint('(id IS NULL) = (available_at IS NULL)', name='ck_reviews_confirmed'),
        sa.PrimaryKeyConstraint('pk'),
        sa.UniqueConstraint('id')
    )
    op.create_index(op.f('ix_reviews_assignment_id'), 'reviews', ['assignment_id'], unique=False)
    op.create_index(op.f('ix_reviews_available_at'), 'reviews', ['available_at'], unique=False)

    op.create_table('user',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('username', sa.Text(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('profile_url', sa.Text(), nullable=False),
        sa.Column('started_at', sa.Text(), nullable=False),
        sa.Column('current_vacation_started_at', sa.Text(), nullable=True),
        sa.Column('subscription', sa.Text(), nullable=False),
        sa.Column('preferences', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    cache_info = op.create_table('cache_info',
        sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('etag', sa.Text(), nullable=True),
        sa.Column('last_modified', sa.Text(), nullable=True),
        sa.Column('updated_after', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    # One empty watermark per resource class (subjects, assignments, user).
    op.bulk_insert(cache_info, [{'id': 0}, {'id': 1}, {'id': 2}])


def downgrade() -> None:
    """Drop every cache table."""
    op.drop_table('cache_info')
    op.drop_table('user')
    op.drop_index(op.f('ix_reviews_available_at'), table_name='reviews')
    op.drop_index(op.f('ix_reviews_assignment_id'), table_name='reviews')
    op.drop_table('reviews')
    op.drop_index(op.f('ix_assignments_available_at'), table_name='assignments')
    op.drop_index(op.f('ix_assignments_subject_id'), table_name='assignments')
    op.drop_table('assignments')
    for table in reversed(SUBJECT_TABLES):
        op.drop_index(op.f(f'ix_{table}_level'), table_name=table)
        op.drop_table(table)
