"""recipe aggregate: recipe, ingredients, ratings

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None

def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]

def upgrade():
    # "item" pertenece al módulo de despensa; sólo se crea si no existe
    bind = op.get_bind()
    if not sa.inspect(bind).has_table("item"):
        op.create_table(
            "item",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False, index=True),
            sa.Column("family_id", sa.String(), nullable=True, index=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )

    op.create_table(
        "recipe",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, index=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("instructions", sa.String(), nullable=False),
        sa.Column("prep_time", sa.Integer(), nullable=False, index=True),
        sa.Column("cook_time", sa.Integer(), nullable=False, index=True),
        sa.Column("servings", sa.Integer(), nullable=False),
        sa.Column("difficulty", sa.String(), nullable=False, index=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("user_id", sa.String(), nullable=False, index=True),
        sa.Column("family_id", sa.String(), nullable=False, index=True),
        *_timestamps(),
    )

    op.create_table(
        "recipeingredient",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("recipe_id", sa.String(), sa.ForeignKey("recipe.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("item_id", sa.String(), sa.ForeignKey("item.id"), nullable=False, index=True),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "reciperating",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("recipe_id", sa.String(), sa.ForeignKey("recipe.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("user_id", sa.String(), nullable=False, index=True),
        sa.Column("nutrition", sa.Integer(), nullable=True),
        sa.Column("flavor", sa.Integer(), nullable=True),
        sa.Column("difficulty", sa.Integer(), nullable=True),
        sa.Column("comment", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("recipe_id", "user_id", name="uq_reciperating_recipe_user"),
    )
    op.create_index("ix_recipe_family_created", "recipe", ["family_id", "created_at"], unique=False)

def downgrade():
    op.drop_index("ix_recipe_family_created", table_name="recipe")
    op.drop_table("reciperating")
    op.drop_table("recipeingredient")
    op.drop_table("recipe")
