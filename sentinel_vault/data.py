from typing import Optional, Union
from collections.abc import Iterable, Iterator, Mapping
from .vault.models import RecordKind, VaultRecord


class WorkingSet(Mapping[str, VaultRecord]):
    """Decrypted records held by an unlocked session.

    Read-only mapping of identifier -> record that keeps the vault order
    (most recently updated first). Mutations go through ``replace``,
    ``put`` and ``discard``, which the session calls after the remote
    store confirmed the change.

    The working set is cleartext: it cannot be pickled and its repr
    never shows record contents.
    """

    def __init__(self) -> None:
        self._order: list[str] = []
        self._records: dict[str, VaultRecord] = {}
        self._versions: dict[str, int] = {}

    def __repr__(self) -> str:
        return f'<WorkingSet [records:{len(self._order)}]>'

    def __reduce__(self):
        raise TypeError('WorkingSet holds cleartext and cannot be serialized')

    # --- Mutation ---

    def replace(
        self,
        records: Iterable[VaultRecord],
        versions: Optional[Mapping[str, int]] = None
    ) -> None:
        """Swap the whole content for records, keeping their order.

        A repeated identifier keeps its first position and its last record.
        """
        self.invalidate()
        for record in records:
            if record.identifier not in self._records:
                self._order.append(record.identifier)
            self._records[record.identifier] = record
        if versions:
            self._versions.update(
                {k: v for k, v in versions.items() if k in self._records}
            )

    def put(self, record: VaultRecord, version: Optional[int] = None) -> None:
        """Replace a record in place, or prepend it when it is new."""
        key = record.identifier
        if key not in self._records:
            self._order.insert(0, key)
        self._records[key] = record
        if version is not None:
            self._versions[key] = version

    def discard(self, identifier: str) -> Optional[VaultRecord]:
        """Remove a record if present; returns what was removed."""
        record = self._records.pop(identifier, None)
        if record is not None:
            self._order.remove(identifier)
        self._versions.pop(identifier, None)
        return record

    def invalidate(self) -> None:
        """Drop every record and version."""
        self._order = []
        self._records = {}
        self._versions = {}

    # --- Queries ---

    def version_of(self, identifier: str) -> int:
        """Envelope version last seen for identifier, 0 if unknown."""
        return self._versions.get(identifier, 0)

    def records(self) -> list[VaultRecord]:
        return [self._records[key] for key in self._order]

    @property
    def empty(self) -> bool:
        return not self._order

    def search(
        self,
        term: str = '',
        kind: Union[RecordKind, str, None] = None
    ) -> list[VaultRecord]:
        """Records whose title or username contains term (case-insensitive),
        optionally restricted to one kind.
        """
        needle = term.lower()
        if kind is not None:
            kind = RecordKind(kind)
        found = []
        for record in self.records():
            if kind is not None and record.kind != kind:
                continue
            if needle and needle not in record.title.lower() and (
                not record.username or needle not in record.username.lower()
            ):
                continue
            found.append(record)
        return found

    def favorites(self) -> list[VaultRecord]:
        return [record for record in self.records() if record.favorite]

    def folders(self) -> list[str]:
        """Distinct non-empty folder labels, sorted."""
        return sorted({r.folder for r in self._records.values() if r.folder})

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._order))

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __getitem__(self, key: str) -> VaultRecord:
        return self._records[key]
