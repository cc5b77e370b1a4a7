"""Initial migration

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


privacy_level = sa.Enum('public', 'followers', 'private', name='privacy_level')


def upgrade() -> None:
    # Profiles table
    op.create_table(
        'profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('avatar_url', sa.String(500), nullable=True),
        sa.Column('is_private', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('followers_count', sa.Integer(), default=0),
        sa.Column('following_count', sa.Integer(), default=0),
        sa.Column('posts_count', sa.Integer(), default=0),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_profiles_id', 'profiles', ['id'])
    op.create_index('ix_profiles_username', 'profiles', ['username'], unique=True)

    # Follows table
    op.create_table(
        'follows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('follower_id', sa.Integer(), nullable=False),
        sa.Column('following_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['follower_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['following_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.CheckConstraint('follower_id <> following_id', name='ck_follow_not_self'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_follows_id', 'follows', ['id'])
    op.create_index('idx_follower', 'follows', ['follower_id'])
    op.create_index('idx_following', 'follows', ['following_id'])
    op.create_index('idx_follow_pair', 'follows', ['follower_id', 'following_id'], unique=True)

    # Blocks table
    op.create_table(
        'blocks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('blocker_id', sa.Integer(), nullable=False),
        sa.Column('blocked_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['blocker_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['blocked_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.CheckConstraint('blocker_id <> blocked_id', name='ck_block_not_self'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_blocks_id', 'blocks', ['id'])
    op.create_index('idx_blocker', 'blocks', ['blocker_id'])
    op.create_index('idx_blocked', 'blocks', ['blocked_id'])
    op.create_index('idx_block_pair', 'blocks', ['blocker_id', 'blocked_id'], unique=True)

    # Posts table
    op.create_table(
        'posts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('author_id', sa.Integer(), nullable=False),
        sa.Column('content', sa.String(2000), nullable=False),
        sa.Column('privacy', privacy_level, nullable=False),
        sa.Column('likes_count', sa.Integer(), default=0),
        sa.Column('comments_count', sa.Integer(), default=0),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['author_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_posts_id', 'posts', ['id'])
    op.create_index('ix_posts_author_id', 'posts', ['author_id'])
    op.create_index('ix_posts_created_at', 'posts', ['created_at'])
    op.create_index('idx_post_author_created', 'posts', ['author_id', 'created_at'])

    # Explicit allow-list for private posts
    op.create_table(
        'post_allowed_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('post_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['post_id'], ['posts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_post_allowed_pair', 'post_allowed_users', ['post_id', 'user_id'], unique=True)

    # Likes table
    op.create_table(
        'likes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('post_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['post_id'], ['posts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_likes_id', 'likes', ['id'])
    op.create_index('idx_like_post', 'likes', ['post_id'])
    op.create_index('idx_like_user_post', 'likes', ['user_id', 'post_id'], unique=True)

    # Comments table
    op.create_table(
        'comments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('post_id', sa.Integer(), nullable=False),
        sa.Column('author_id', sa.Integer(), nullable=False),
        sa.Column('content', sa.String(1000), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['post_id'], ['posts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['author_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_comments_id', 'comments', ['id'])
    op.create_index('ix_comments_post_id', 'comments', ['post_id'])

    # Conversations table; participants stored sorted
    op.create_table(
        'conversations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('participant1_id', sa.Integer(), nullable=False),
        sa.Column('participant2_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('last_message_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['participant1_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['participant2_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.CheckConstraint('participant1_id < participant2_id', name='ck_conversation_sorted_pair'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_conversations_id', 'conversations', ['id'])
    op.create_index('ix_conversations_last_message_at', 'conversations', ['last_message_at'])
    op.create_index('idx_conversation_pair', 'conversations', ['participant1_id', 'participant2_id'], unique=True)
    op.create_index('idx_conversation_participant2', 'conversations', ['participant2_id'])

    # Messages table
    op.create_table(
        'messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('conversation_id', sa.Integer(), nullable=False),
        sa.Column('sender_id', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_messages_id', 'messages', ['id'])
    op.create_index('idx_message_conversation', 'messages', ['conversation_id', 'id'])

    # At most one pending deletion request per conversation
    op.create_table(
        'conversation_deletion_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('conversation_id', sa.Integer(), nullable=False),
        sa.Column('requested_by', sa.Integer(), nullable=False),
        sa.Column('requested_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['requested_by'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('conversation_id')
    )
    op.create_index('ix_conversation_deletion_requests_id', 'conversation_deletion_requests', ['id'])


def downgrade() -> None:
    op.drop_table('conversation_deletion_requests')
    op.drop_table('messages')
    op.drop_table('conversations')
    op.drop_table('comments')
    op.drop_table('likes')
    op.drop_table('post_allowed_users')
    op.drop_table('posts')
    op.drop_table('blocks')
    op.drop_table('follows')
    op.drop_table('profiles')
    privacy_level.drop(op.get_bind(), checkfirst=True)
