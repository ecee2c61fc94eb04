"""create family economy tables

Revision ID: 0001_chorebank_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_chorebank_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "families",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("Name", sa.String(length=200), nullable=False),
        sa.Column("Email", sa.String(length=254), nullable=True),
        sa.Column("FamilyCode", sa.String(length=20), nullable=False),
        sa.Column("SubscriptionPlan", sa.String(length=20), nullable=False, server_default="none"),
        sa.Column("SubscriptionStatus", sa.String(length=20), nullable=False, server_default="inactive"),
        sa.Column("SubscriptionInterval", sa.String(length=20), nullable=True),
        sa.Column("SubscriptionRenewalDate", sa.DateTime(), nullable=True),
        sa.Column("SubscriptionLastPaymentAt", sa.DateTime(), nullable=True),
        sa.Column("SubscriptionOrderId", sa.String(length=120), nullable=True),
        sa.Column("SubscriptionPendingPlan", sa.String(length=20), nullable=True),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("FamilyCode", name="uq_families_family_code"),
    )
    op.create_index("ix_families_renewal_date", "families", ["SubscriptionRenewalDate"])

    op.create_table(
        "children",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("FamilyId", sa.Integer(), sa.ForeignKey("families.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("DisplayName", sa.String(length=120), nullable=False),
        sa.Column("PointsBalance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("TotalPointsEarned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("Xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("TotalXpEarned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("Version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False),
        sa.CheckConstraint('"PointsBalance" >= 0', name="ck_children_balance_non_negative"),
    )
    op.create_index("ix_children_family_id", "children", ["FamilyId"])

    op.create_table(
        "points_ledger_entries",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("FamilyId", sa.Integer(), sa.ForeignKey("families.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("ChildId", sa.Integer(), sa.ForeignKey("children.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("EntryType", sa.String(length=20), nullable=False),
        sa.Column("Amount", sa.Integer(), nullable=False),
        sa.Column("Reason", sa.String(length=300), nullable=False),
        sa.Column("RelatedChoreId", sa.Integer(), nullable=True),
        sa.Column("RelatedRewardId", sa.Integer(), nullable=True),
        sa.Column("BalanceBefore", sa.Integer(), nullable=False),
        sa.Column("BalanceAfter", sa.Integer(), nullable=False),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_points_ledger_entries_family_id", "points_ledger_entries", ["FamilyId"])
    op.create_index("ix_points_ledger_child_created", "points_ledger_entries", ["ChildId", "Id"])

    op.create_table(
        "chores",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("FamilyId", sa.Integer(), sa.ForeignKey("families.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("Name", sa.String(length=200), nullable=False),
        sa.Column("Points", sa.Integer(), nullable=False),
        sa.Column("Status", sa.String(length=20), nullable=False, server_default="available"),
        sa.Column("SubmittedByChildId", sa.Integer(), nullable=True),
        sa.Column("SubmittedAt", sa.DateTime(), nullable=True),
        sa.Column("Emotion", sa.String(length=40), nullable=True),
        sa.Column("PhotoUrl", sa.String(length=500), nullable=True),
        sa.Column("ApprovedAt", sa.DateTime(), nullable=True),
        sa.Column("RecurrenceType", sa.String(length=20), nullable=False, server_default="none"),
        sa.Column("RecurrenceDays", sa.String(length=100), nullable=True),
        sa.Column("RecurrenceRule", sa.String(length=100), nullable=True),
        sa.Column("IsTemplate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("TemplateId", sa.Integer(), nullable=True),
        sa.Column("NextDueDate", sa.DateTime(), nullable=True),
        sa.Column("DueDate", sa.DateTime(), nullable=True),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False),
        sa.Column("UpdatedAt", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("TemplateId", "DueDate", name="uq_chores_template_due"),
    )
    op.create_index("ix_chores_family_id", "chores", ["FamilyId"])
    op.create_index("ix_chores_submitted_by_child_id", "chores", ["SubmittedByChildId"])
    op.create_index("ix_chores_template_id", "chores", ["TemplateId"])
    op.create_index("ix_chores_next_due_date", "chores", ["NextDueDate"])

    op.create_table(
        "chore_assignments",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("ChoreId", sa.Integer(), sa.ForeignKey("chores.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("ChildId", sa.Integer(), sa.ForeignKey("children.Id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("ChoreId", "ChildId", name="uq_chore_assignments"),
    )
    op.create_index("ix_chore_assignments_chore_id", "chore_assignments", ["ChoreId"])
    op.create_index("ix_chore_assignments_child_id", "chore_assignments", ["ChildId"])

    op.create_table(
        "rewards",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("FamilyId", sa.Integer(), sa.ForeignKey("families.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("Name", sa.String(length=200), nullable=False),
        sa.Column("Cost", sa.Integer(), nullable=False),
        sa.Column("Category", sa.String(length=40), nullable=False, server_default="privilege"),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False),
        sa.Column("UpdatedAt", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_rewards_family_id", "rewards", ["FamilyId"])

    op.create_table(
        "reward_assignments",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("RewardId", sa.Integer(), sa.ForeignKey("rewards.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("ChildId", sa.Integer(), sa.ForeignKey("children.Id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("RewardId", "ChildId", name="uq_reward_assignments"),
    )
    op.create_index("ix_reward_assignments_reward_id", "reward_assignments", ["RewardId"])
    op.create_index("ix_reward_assignments_child_id", "reward_assignments", ["ChildId"])

    op.create_table(
        "pending_rewards",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("FamilyId", sa.Integer(), sa.ForeignKey("families.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("ChildId", sa.Integer(), sa.ForeignKey("children.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("RewardId", sa.Integer(), sa.ForeignKey("rewards.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("RewardName", sa.String(length=200), nullable=False),
        sa.Column("Points", sa.Integer(), nullable=False),
        sa.Column("Status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("LedgerEntryId", sa.Integer(), sa.ForeignKey("points_ledger_entries.Id"), nullable=True),
        sa.Column("RedeemedAt", sa.DateTime(), nullable=False),
        sa.Column("ResolvedAt", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_pending_rewards_family_id", "pending_rewards", ["FamilyId"])
    op.create_index("ix_pending_rewards_child_id", "pending_rewards", ["ChildId"])
    op.create_index("ix_pending_rewards_reward_id", "pending_rewards", ["RewardId"])

    op.create_table(
        "coupons",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("Code", sa.String(length=50), nullable=False),
        sa.Column("Description", sa.String(length=300), nullable=True),
        sa.Column("DiscountType", sa.String(length=20), nullable=False),
        sa.Column("DiscountValue", sa.Integer(), nullable=False),
        sa.Column("MaxUses", sa.Integer(), nullable=True),
        sa.Column("UsedCount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("IsActive", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ValidFrom", sa.DateTime(), nullable=True),
        sa.Column("ValidUntil", sa.DateTime(), nullable=True),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False),
        sa.Column("UpdatedAt", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("Code", name="uq_coupons_code"),
    )

    op.create_table(
        "coupon_usages",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("CouponId", sa.Integer(), sa.ForeignKey("coupons.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("FamilyId", sa.Integer(), sa.ForeignKey("families.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("OrderId", sa.String(length=120), nullable=True),
        sa.Column("DiscountApplied", sa.Integer(), nullable=False),
        sa.Column("UsedAt", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("CouponId", "FamilyId", name="uq_coupon_usages_family"),
    )
    op.create_index("ix_coupon_usages_coupon_id", "coupon_usages", ["CouponId"])
    op.create_index("ix_coupon_usages_family_id", "coupon_usages", ["FamilyId"])

    op.create_table(
        "subscription_events",
        sa.Column("Id", sa.Integer(), primary_key=True),
        sa.Column("FamilyId", sa.Integer(), sa.ForeignKey("families.Id", ondelete="CASCADE"), nullable=False),
        sa.Column("Action", sa.String(length=40), nullable=False),
        sa.Column("OrderId", sa.String(length=120), nullable=True),
        sa.Column("BeforeJson", sa.Text(), nullable=True),
        sa.Column("AfterJson", sa.Text(), nullable=True),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_subscription_events_family_id", "subscription_events", ["FamilyId"])


def downgrade() -> None:
    op.drop_index("ix_subscription_events_family_id", table_name="subscription_events")
    op.drop_table("subscription_events")
    op.drop_index("ix_coupon_usages_family_id", table_name="coupon_usages")
    op.drop_index("ix_coupon_usages_coupon_id", table_name="coupon_usages")
    op.drop_table("coupon_usages")
    op.drop_table("coupons")
    op.drop_index("ix_pending_rewards_reward_id", table_name="pending_rewards")
    op.drop_index("ix_pending_rewards_child_id", table_name="pending_rewards")
    op.drop_index("ix_pending_rewards_family_id", table_name="pending_rewards")
    op.drop_table("pending_rewards")
    op.drop_index("ix_reward_assignments_child_id", table_name="reward_assignments")
    op.drop_index("ix_reward_assignments_reward_id", table_name="reward_assignments")
    op.drop_table("reward_assignments")
    op.drop_index("ix_rewards_family_id", table_name="rewards")
    op.drop_table("rewards")
    op.drop_index("ix_chore_assignments_child_id", table_name="chore_assignments")
    op.drop_index("ix_chore_assignments_chore_id", table_name="chore_assignments")
    op.drop_table("chore_assignments")
    op.drop_index("ix_chores_next_due_date", table_name="chores")
    op.drop_index("ix_chores_template_id", table_name="chores")
    op.drop_index("ix_chores_submitted_by_child_id", table_name="chores")
    op.drop_index("ix_chores_family_id", table_name="chores")
    op.drop_table("chores")
    op.drop_index("ix_points_ledger_child_created", table_name="points_ledger_entries")
    op.drop_index("ix_points_ledger_entries_family_id", table_name="points_ledger_entries")
    op.drop_table("points_ledger_entries")
    op.drop_index("ix_children_family_id", table_name="children")
    op.drop_table("children")
    op.drop_index("ix_families_renewal_date", table_name="families")
    op.drop_table("families")
