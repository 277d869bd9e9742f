"""Migration utilities for moving data between stores."""

from dataclasses import dataclass

from flickswiper.store.base import Store


@dataclass
class MigrationCounts:
    """How many records of each kind were copied."""
    classified: int = 0
    lists: int = 0
    entries: int = 0
    followed: int = 0


def migrate_store(source: Store, target: Store) -> MigrationCounts:
    """Copy all data from source store to target store.

    The copy runs in a single target transaction, so a failure leaves the
    target untouched. Records already present in the target are overwritten.

    Args:
        source: The store to read from.
        target: The store to write to.

    Returns:
        Counts of migrated records.
    """
    counts = MigrationCounts()
    existing_ids = target.classified_ids()
    existing_lists = {l.id for l in target.list_user_lists()}

    with target.transaction():
        for item in source.list_classified():
            if item.unique_id in existing_ids:
                target.update_classified(item)
            else:
                target.insert_classified(item)
            counts.classified += 1

        for user_list in source.list_user_lists():
            if user_list.id in existing_lists:
                target.update_user_list(user_list)
            else:
                target.add_user_list(user_list)
            counts.lists += 1

        for entry in source.get_list_entries():
            if target.add_list_entry(entry):
                counts.entries += 1

        for followed in source.list_followed_lists():
            target.upsert_followed_list(followed)
            target.replace_followed_list_items(
                followed.remote_doc_id,
                source.get_followed_list_items(followed.remote_doc_id),
            )
            counts.followed += 1

    return counts
