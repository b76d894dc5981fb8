from typing import Dict, List


class UnionFind:
    """Disjoint sets over the indices 0..count-1."""

    def __init__(self, count: int):
        self.parent = list(range(count))
        self.rank = [0] * count

    def __len__(self) -> int:
        return len(self.parent)

    def find(self, x: int) -> int:
        """Root of x, compressing the path on the way back."""
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, x: int, y: int) -> bool:
        """Union by rank. Returns False when x and y were already connected."""
        root_x = self.find(x)
        root_y = self.find(y)

        if root_x == root_y:
            return False

        if self.rank[root_x] < self.rank[root_y]:
            self.parent[root_x] = root_y
        elif self.rank[root_x] > self.rank[root_y]:
            self.parent[root_y] = root_x
        else:
            self.parent[root_y] = root_x
            self.rank[root_x] += 1
        return True

    def connected(self, x: int, y: int) -> bool:
        return self.find(x) == self.find(y)

    def components(self) -> List[List[int]]:
        """Member indices per set, ordered by each set's smallest index."""
        by_root: Dict[int, List[int]] = {}
        for i in range(len(self.parent)):
            by_root.setdefault(self.find(i), []).append(i)
        return sorted(by_root.values(), key=lambda members: members[0])
