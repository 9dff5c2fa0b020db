"""Entity collections and the attributes indexed on each."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Collection:
    """An entity collection backed by one table."""

    name: str
    indexes: tuple[str, ...]

    @property
    def table(self) -> str:
        return self.name


# Every collection also gets an index on change_id for loop prevention.
COLLECTIONS: dict[str, Collection] = {
    c.name: c
    for c in (
        Collection("families", ("created_at", "last_modified")),
        Collection("members", ("family_id", "user_id", "role", "last_modified")),
        Collection(
            "tasks",
            (
                "family_id",
                "assigned_to",
                "created_by",
                "status",
                "due_date",
                "last_modified",
                "is_deleted",
            ),
        ),
        Collection(
            "point_transactions",
            ("member_id", "task_id", "transaction_type", "created_at", "last_modified"),
        ),
        Collection(
            "rewards",
            ("family_id", "points_cost", "is_active", "last_modified", "is_deleted"),
        ),
        Collection(
            "reward_redemptions",
            ("member_id", "reward_id", "status", "redeemed_at", "last_modified"),
        ),
    )
}
