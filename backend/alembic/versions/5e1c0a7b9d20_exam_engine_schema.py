"""exam engine schema: syllabus topics, questions, exposures, tests

Revision ID: 5e1c0a7b9d20
Revises:
Create Date: 2026-10-16 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5e1c0a7b9d20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'syllabus_topics',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('curriculum', sa.String(length=64), nullable=False),
        sa.Column('grade', sa.Integer(), nullable=False),
        sa.Column('subject', sa.String(length=128), nullable=False),
        sa.Column('topic_name', sa.String(length=255), nullable=False),
        sa.Column('syllabus_section', sa.String(length=255), nullable=False),
        sa.Column('official_content', sa.Text(), nullable=False),
        sa.Column('learning_objectives', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_syllabus_topics_curriculum'), 'syllabus_topics', ['curriculum'], unique=False)
    op.create_index(op.f('ix_syllabus_topics_subject'), 'syllabus_topics', ['subject'], unique=False)

    op.create_table(
        'questions',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('topic_id', sa.String(length=128), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('question_type', sa.String(length=32), nullable=False),
        sa.Column('options', sa.JSON(), nullable=False),
        sa.Column('correct_answers', sa.JSON(), nullable=False),
        sa.Column('syllabus_reference', sa.Text(), nullable=False),
        sa.Column('difficulty', sa.String(length=32), server_default=sa.text("'exam_realistic'"), nullable=False),
        sa.Column('source', sa.String(length=16), server_default=sa.text("'seed'"), nullable=False),
        sa.Column('embedding', sa.JSON(), nullable=True),
        sa.Column('embedding_model', sa.String(length=128), nullable=True),
        sa.Column('retired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_questions_topic_id'), 'questions', ['topic_id'], unique=False)

    op.create_table(
        'question_exposures',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('question_id', sa.String(length=64), nullable=False),
        sa.Column('topic_id', sa.String(length=128), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'question_id', name='uq_question_exposures_user_question')
    )
    op.create_index(op.f('ix_question_exposures_user_id'), 'question_exposures', ['user_id'], unique=False)

    op.create_table(
        'test_configurations',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('curriculum', sa.String(length=64), nullable=False),
        sa.Column('grade', sa.Integer(), nullable=True),
        sa.Column('subject', sa.String(length=128), nullable=False),
        sa.Column('topic_ids', sa.JSON(), nullable=False),
        sa.Column('question_count', sa.Integer(), nullable=False),
        sa.Column('test_count', sa.Integer(), nullable=False),
        sa.Column('mode', sa.String(length=16), nullable=False),
        sa.Column('relevance_query', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_test_configurations_user_id'), 'test_configurations', ['user_id'], unique=False)

    op.create_table(
        'assembled_tests',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('configuration_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('batch_index', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['configuration_id'], ['test_configurations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_assembled_tests_configuration_id'), 'assembled_tests', ['configuration_id'], unique=False)
    op.create_index(op.f('ix_assembled_tests_user_id'), 'assembled_tests', ['user_id'], unique=False)

    op.create_table(
        'assembled_test_questions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('test_id', sa.String(length=64), nullable=False),
        sa.Column('question_id', sa.String(length=64), nullable=False),
        sa.Column('order_no', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['test_id'], ['assembled_tests.id'], ),
        sa.ForeignKeyConstraint(['question_id'], ['questions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('test_id', 'order_no', name='uq_assembled_test_questions_order')
    )
    op.create_index(op.f('ix_assembled_test_questions_test_id'), 'assembled_test_questions', ['test_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_assembled_test_questions_test_id'), table_name='assembled_test_questions')
    op.drop_table('assembled_test_questions')
    op.drop_index(op.f('ix_assembled_tests_user_id'), table_name='assembled_tests')
    op.drop_index(op.f('ix_assembled_tests_configuration_id'), table_name='assembled_tests')
    op.drop_table('assembled_tests')
    op.drop_index(op.f('ix_test_configurations_user_id'), table_name='test_configurations')
    op.drop_table('test_configurations')
    op.drop_index(op.f('ix_question_exposures_user_id'), table_name='question_exposures')
    op.drop_table('question_exposures')
    op.drop_index(op.f('ix_questions_topic_id'), table_name='questions')
    op.drop_table('questions')
    op.drop_index(op.f('ix_syllabus_topics_subject'), table_name='syllabus_topics')
    op.drop_index(op.f('ix_syllabus_topics_curriculum'), table_name='syllabus_topics')
    op.drop_table('syllabus_topics')
