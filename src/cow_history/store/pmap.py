"""Persistent hash array mapped trie used for copy-on-write world state.

Every update returns a new map that shares all untouched nodes with the
previous one, so keeping old versions alive costs only the nodes on the
changed paths (at most ``ceil(64 / 5)`` nodes per key).
"""

from __future__ import annotations

from typing import (
    Any,
    Hashable,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from .equality import same_value

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

_BITS = 5
_WIDTH = 1 << _BITS
_MASK = _WIDTH - 1
_HASH_MASK = (1 << 64) - 1

_MISSING = object()


class _Entry:
    __slots__ = ("hash", "key", "value")

    def __init__(self, hash_: int, key: Any, value: Any) -> None:
        self.hash = hash_
        self.key = key
        self.value = value


class _Node:
    __slots__ = ("bitmap", "slots")

    def __init__(self, bitmap: int, slots: tuple) -> None:
        self.bitmap = bitmap
        self.slots = slots


class _Collision:
    """Bucket for keys whose full 64-bit hashes are equal."""

    __slots__ = ("hash", "entries")

    def __init__(self, hash_: int, entries: Tuple[_Entry, ...]) -> None:
        self.hash = hash_
        self.entries = entries


_Slot = Union[_Entry, _Node, _Collision]
_EMPTY = _Node(0, ())


def _hash(key: Any) -> int:
    return hash(key) & _HASH_MASK


def _position(bitmap: int, bit: int) -> int:
    return (bitmap & (bit - 1)).bit_count()


def _lookup(node: _Slot, hash_: int, key: Any, default: Any) -> Any:
    shift = 0
    while True:
        if isinstance(node, _Collision):
            for entry in node.entries:
                if entry.key == key:
                    return entry.value
            return default
        if isinstance(node, _Entry):
            return node.value if node.hash == hash_ and node.key == key else default
        bit = 1 << ((hash_ >> shift) & _MASK)
        if not node.bitmap & bit:
            return default
        node = node.slots[_position(node.bitmap, bit)]
        shift += _BITS


def _merge(left: _Entry, right: _Entry, shift: int) -> _Slot:
    if left.hash == right.hash:
        return _Collision(left.hash, (left, right))
    left_idx = (left.hash >> shift) & _MASK
    right_idx = (right.hash >> shift) & _MASK
    if left_idx == right_idx:
        return _Node(1 << left_idx, (_merge(left, right, shift + _BITS),))
    slots = (left, right) if left_idx < right_idx else (right, left)
    return _Node((1 << left_idx) | (1 << right_idx), slots)


def _assoc(node: _Slot, shift: int, entry: _Entry) -> Tuple[_Slot, bool]:
    """Return ``(new_node, added)``; ``new_node is node`` when nothing changed."""

    if isinstance(node, _Collision):
        if entry.hash != node.hash:
            wrapper = _Node(1 << ((node.hash >> shift) & _MASK), (node,))
            return _assoc(wrapper, shift, entry)
        for index, existing in enumerate(node.entries):
            if existing.key == entry.key:
                if existing.value is entry.value:
                    return node, False
                entries = node.entries[:index] + (entry,) + node.entries[index + 1 :]
                return _Collision(node.hash, entries), False
        return _Collision(node.hash, node.entries + (entry,)), True

    assert isinstance(node, _Node)
    bit = 1 << ((entry.hash >> shift) & _MASK)
    index = _position(node.bitmap, bit)
    if not node.bitmap & bit:
        slots = node.slots[:index] + (entry,) + node.slots[index:]
        return _Node(node.bitmap | bit, slots), True

    current = node.slots[index]
    if isinstance(current, _Entry):
        if current.hash == entry.hash and current.key == entry.key:
            if current.value is entry.value:
                return node, False
            replacement: _Slot = entry
            added = False
        else:
            replacement = _merge(current, entry, shift + _BITS)
            added = True
    else:
        replacement, added = _assoc(current, shift + _BITS, entry)
        if replacement is current:
            return node, False

    slots = node.slots[:index] + (replacement,) + node.slots[index + 1 :]
    return _Node(node.bitmap, slots), added


def _dissoc(node: _Slot, shift: int, hash_: int, key: Any) -> Optional[_Slot]:
    """Return the node without ``key``; ``None`` when it became empty."""

    if isinstance(node, _Collision):
        entries = tuple(entry for entry in node.entries if entry.key != key)
        if len(entries) == len(node.entries):
            return node
        if len(entries) == 1:
            return entries[0]
        return _Collision(node.hash, entries)

    assert isinstance(node, _Node)
    bit = 1 << ((hash_ >> shift) & _MASK)
    if not node.bitmap & bit:
        return node
    index = _position(node.bitmap, bit)
    current = node.slots[index]

    if isinstance(current, _Entry):
        if current.hash != hash_ or current.key != key:
            return node
        replacement: Optional[_Slot] = None
    else:
        replacement = _dissoc(current, shift + _BITS, hash_, key)
        if replacement is current:
            return node

    if replacement is None:
        bitmap = node.bitmap & ~bit
        if not bitmap:
            return None
        slots = node.slots[:index] + node.slots[index + 1 :]
        if shift and len(slots) == 1 and isinstance(slots[0], _Entry):
            return slots[0]
        return _Node(bitmap, slots)

    if shift and len(node.slots) == 1 and isinstance(replacement, _Entry):
        return replacement
    slots = node.slots[:index] + (replacement,) + node.slots[index + 1 :]
    return _Node(node.bitmap, slots)


def _entries(node: Optional[_Slot]) -> Iterator[_Entry]:
    if node is None:
        return
    if isinstance(node, _Entry):
        yield node
    elif isinstance(node, _Collision):
        yield from node.entries
    else:
        for slot in node.slots:
            yield from _entries(slot)


def _slot_for(node: _Node, chunk: int) -> Optional[_Slot]:
    bit = 1 << chunk
    if not node.bitmap & bit:
        return None
    return node.slots[_position(node.bitmap, bit)]


def _diff(left: Optional[_Slot], right: Optional[_Slot], out: List[Any]) -> None:
    if left is right:
        return
    if isinstance(left, _Node) and isinstance(right, _Node):
        for chunk in range(_WIDTH):
            _diff(_slot_for(left, chunk), _slot_for(right, chunk), out)
        return
    left_items = {entry.key: entry.value for entry in _entries(left)}
    right_items = {entry.key: entry.value for entry in _entries(right)}
    for key, value in left_items.items():
        other = right_items.get(key, _MISSING)
        if other is _MISSING or not same_value(other, value):
            out.append(key)
    out.extend(key for key in right_items if key not in left_items)


class PersistentMap(Mapping[K, V]):
    """Immutable mapping with O(log32 n) structural-sharing updates."""

    __slots__ = ("_root", "_size")

    def __init__(
        self, items: Union[Mapping[K, V], Iterable[Tuple[K, V]], None] = None
    ) -> None:
        root: _Slot = _EMPTY
        size = 0
        if items is not None:
            pairs = items.items() if isinstance(items, Mapping) else items
            for key, value in pairs:
                root, added = _assoc(root, 0, _Entry(_hash(key), key, value))
                size += added
        self._root = root
        self._size = size

    @classmethod
    def _from_root(cls, root: _Slot, size: int) -> "PersistentMap[K, V]":
        instance = cls.__new__(cls)
        instance._root = root
        instance._size = size
        return instance

    def __getitem__(self, key: K) -> V:
        value = _lookup(self._root, _hash(key), key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def get(self, key: K, default: Any = None) -> Any:
        return _lookup(self._root, _hash(key), key, default)

    def __contains__(self, key: object) -> bool:
        return _lookup(self._root, _hash(key), key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[K]:
        return (entry.key for entry in _entries(self._root))

    def items(self) -> Iterator[Tuple[K, V]]:  # type: ignore[override]
        return ((entry.key, entry.value) for entry in _entries(self._root))

    def values(self) -> Iterator[V]:  # type: ignore[override]
        return (entry.value for entry in _entries(self._root))

    def set(self, key: K, value: V) -> "PersistentMap[K, V]":
        root, added = _assoc(self._root, 0, _Entry(_hash(key), key, value))
        if root is self._root:
            return self
        return self._from_root(root, self._size + added)

    def discard(self, key: K) -> "PersistentMap[K, V]":
        root = _dissoc(self._root, 0, _hash(key), key)
        if root is self._root:
            return self
        return self._from_root(root if root is not None else _EMPTY, self._size - 1)

    def delete(self, key: K) -> "PersistentMap[K, V]":
        updated = self.discard(key)
        if updated is self:
            raise KeyError(key)
        return updated

    def update(
        self, items: Union[Mapping[K, V], Iterable[Tuple[K, V]]]
    ) -> "PersistentMap[K, V]":
        pairs = items.items() if isinstance(items, Mapping) else items
        result = self
        for key, value in pairs:
            result = result.set(key, value)
        return result

    def shares_root_with(self, other: "PersistentMap[Any, Any]") -> bool:
        return self._root is other._root

    def diff_keys(self, other: "PersistentMap[K, V]") -> List[K]:
        """Keys whose presence or value differs, skipping shared subtrees."""

        changed: List[K] = []
        _diff(self._root, other._root, changed)
        return changed

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PersistentMap):
            if self._root is other._root:
                return True
            return self._size == other._size and not self.diff_keys(other)
        return super().__eq__(other)

    def __hash__(self) -> int:
        return hash(frozenset(self.items()))

    def __repr__(self) -> str:
        body = ", ".join(f"{key!r}: {value!r}" for key, value in self.items())
        return f"PersistentMap({{{body}}})"


__all__ = ["PersistentMap"]
