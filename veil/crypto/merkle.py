"""
Veil Protocol v1 Merkle Trees

- merkle_root(): one-shot binary tree over a list of hashes, used for
  set digests.
- IncrementalMerkleTree: fixed-depth append-only tree with O(depth) appends
  and authentication paths, used by the commitment accumulator.
"""

from __future__ import annotations
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Sequence, Tuple

from veil.constants import DOMAIN_LEAF, DOMAIN_NODE
from veil.core.types import Hash
from veil.crypto.hash import sha3_256, tagged_hash


def is_power_of_two(n: int) -> bool:
    """Check if n is a power of 2."""
    return n > 0 and (n & (n - 1)) == 0


def merkle_root(hashes: Sequence[Hash]) -> Hash:
    """
    Compute Merkle root from a list of hashes.

    - Empty list returns zero hash
    - Single element returns that element
    - Otherwise, pad to power of 2 by duplicating the last element and
      build the tree bottom-up

    Args:
        hashes: List of leaf hashes

    Returns:
        Merkle root hash
    """
    if len(hashes) == 0:
        return Hash.zero()

    if len(hashes) == 1:
        return hashes[0]

    leaves = list(hashes)
    while not is_power_of_two(len(leaves)):
        leaves.append(leaves[-1])

    while len(leaves) > 1:
        next_level = []
        for i in range(0, len(leaves), 2):
            combined = leaves[i].data + leaves[i + 1].data
            next_level.append(sha3_256(combined))
        leaves = next_level

    return leaves[0]


# ==============================================================================
# Incremental tree
# ==============================================================================

def leaf_hash(item: Hash) -> Hash:
    """Hash a commitment into a leaf node."""
    return tagged_hash(DOMAIN_LEAF, item.data)


def node_hash(left: Hash, right: Hash) -> Hash:
    """Hash two children into their parent."""
    return tagged_hash(DOMAIN_NODE, left.data + right.data)


@lru_cache(maxsize=None)
def empty_roots(depth: int) -> Tuple[Hash, ...]:
    """
    Roots of empty subtrees for every height 0..depth.

    empty_roots(d)[0] is the empty leaf (zero hash), [h] is the root of an
    empty subtree of height h.
    """
    roots = [Hash.zero()]
    for _ in range(depth):
        roots.append(node_hash(roots[-1], roots[-1]))
    return tuple(roots)


@dataclass(frozen=True)
class MerklePath:
    """
    Authentication path for one leaf.

    siblings[h] is the sibling at height h; bit h of index says whether the
    node on the path is a right child.
    """
    item: Hash
    index: int
    siblings: Tuple[Hash, ...]

    def compute_root(self) -> Hash:
        current = leaf_hash(self.item)
        for height, sibling in enumerate(self.siblings):
            if (self.index >> height) & 1:
                current = node_hash(sibling, current)
            else:
                current = node_hash(current, sibling)
        return current

    def verify(self, root: Hash) -> bool:
        """
        Verify this path against the expected root.

        Args:
            root: Expected Merkle root

        Returns:
            True if path is valid
        """
        if self.index < 0 or self.index >= (1 << len(self.siblings)):
            return False
        return self.compute_root() == root

    def to_dict(self) -> dict:
        return {
            "item": self.item.hex(),
            "index": self.index,
            "siblings": [s.hex() for s in self.siblings],
        }


class IncrementalMerkleTree:
    """
    Fixed-depth append-only Merkle tree.

    Only the non-empty prefix of every level is stored; missing right
    siblings are the precomputed empty-subtree roots. Not thread-safe on
    its own: callers serialize access.
    """

    def __init__(self, depth: int):
        if depth < 1:
            raise ValueError(f"Tree depth must be at least 1, got {depth}")
        self.depth = depth
        self._empty = empty_roots(depth)
        # _levels[0] are leaf nodes, _levels[depth] holds at most the root
        self._levels: List[List[Hash]] = [[] for _ in range(depth + 1)]
        self._items: List[Hash] = []

    @property
    def capacity(self) -> int:
        return 1 << self.depth

    @property
    def size(self) -> int:
        return len(self._items)

    @property
    def root(self) -> Hash:
        if not self._items:
            return self._empty[self.depth]
        return self._levels[self.depth][0]

    def items(self) -> List[Hash]:
        """Appended items in insertion order."""
        return list(self._items)

    def item_at(self, index: int) -> Hash:
        return self._items[index]

    def _node(self, height: int, position: int) -> Hash:
        level = self._levels[height]
        if position < len(level):
            return level[position]
        return self._empty[height]

    def append(self, item: Hash) -> int:
        """
        Append an item and update its path to the root.

        Returns:
            Index of the appended item

        Raises:
            ValueError: If the tree is full
        """
        index = len(self._items)
        if index >= self.capacity:
            raise ValueError(f"Merkle tree full ({self.capacity} leaves)")

        # Compute the whole path first, then write it
        updates = []
        position = index
        current = leaf_hash(item)
        updates.append((0, position, current))
        for height in range(self.depth):
            if position & 1:
                current = node_hash(self._node(height, position - 1), current)
            else:
                current = node_hash(current, self._empty[height])
            position >>= 1
            updates.append((height + 1, position, current))

        for height, pos, value in updates:
            level = self._levels[height]
            if pos < len(level):
                level[pos] = value
            else:
                level.append(value)
        self._items.append(item)
        return index

    def path(self, index: int) -> MerklePath:
        """
        Build the authentication path for the item at index.

        Raises:
            IndexError: If index is not a used leaf
        """
        if index < 0 or index >= len(self._items):
            raise IndexError(f"No leaf at index {index}")

        siblings = []
        position = index
        for height in range(self.depth):
            siblings.append(self._node(height, position ^ 1))
            position >>= 1

        return MerklePath(item=self._items[index], index=index, siblings=tuple(siblings))

    @classmethod
    def from_items(cls, items: Sequence[Hash], depth: int) -> "IncrementalMerkleTree":
        """Rebuild a tree by replaying items in insertion order."""
        tree = cls(depth)
        for item in items:
            tree.append(item)
        return tree
