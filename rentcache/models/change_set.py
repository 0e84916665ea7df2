from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ChangeSet:
    """Created, updated and deleted records of one collection."""
    created: List[Dict[str, Any]] = field(default_factory=list)
    updated: List[Dict[str, Any]] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ChangeSet':
        """Raises ValueError if a created or updated record is not an object."""
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError(f"Change set must be an object, got {type(data).__name__}")
        created = list(data.get('created') or [])
        updated = list(data.get('updated') or [])
        for record in created + updated:
            if not isinstance(record, dict):
                raise ValueError(f"Record must be an object, got {type(record).__name__}")
        return cls(
            created=created,
            updated=updated,
            deleted=[str(record_id) for record_id in data.get('deleted') or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created': self.created,
            'updated': self.updated,
            'deleted': self.deleted,
        }

    def is_empty(self) -> bool:
        return not (self.created or self.updated or self.deleted)

    def record_ids(self) -> set:
        """Every id touched by this change set."""
        ids = {str(record['id']) for record in self.created + self.updated if 'id' in record}
        return ids | set(self.deleted)

    def __len__(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)


@dataclass
class PullResponse:
    """Response of a pull: change sets per collection and the new server version."""
    changes: Dict[str, ChangeSet]
    latest_version: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PullResponse':
        changes = {
            collection: ChangeSet.from_dict(change_set)
            for collection, change_set in (data.get('changes') or {}).items()
        }
        return cls(changes=changes, latest_version=int(data['latestVersion']))

    def total_changes(self) -> int:
        return sum(len(change_set) for change_set in self.changes.values())
