"""
Feature Engineering Module

Handles creation of features for model training:
- User/item ID -> dense index encoding (bidirectional)
- Rating triples (user_index, item_index, label)
- Sparse matrix representation

"""

import numbers
from typing import Any, Dict, Hashable, Iterable, List, Optional

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

from .exceptions import DataFormatError, UnknownEntityError


def normalize_id(raw_id: Any) -> Hashable:
    """
    Canonical form of a raw ID.

    numpy scalars become Python scalars and integral floats become ints,
    so 7, 7.0 and np.int64(7) all map to one vocabulary entry.
    """
    if isinstance(raw_id, np.generic):
        raw_id = raw_id.item()
    if isinstance(raw_id, bool):
        return raw_id
    if isinstance(raw_id, numbers.Real) and not isinstance(raw_id, numbers.Integral):
        if float(raw_id).is_integer():
            return int(raw_id)
    return raw_id


class IdEncoder:
    """
    Maps raw IDs to contiguous indices in order of first appearance.

    The vocabulary grows while encoding training data. After freeze() an
    unseen ID raises UnknownEntityError instead of getting a new index.
    """

    def __init__(self, kind: str = "entity"):
        self.kind = kind
        self.mapping: Dict[Hashable, int] = {}  # {raw_id: index}
        self.reverse_mapping: List[Hashable] = []  # index -> raw_id
        self._frozen = False

    def encode(self, raw_id: Any) -> int:
        key = normalize_id(raw_id)
        idx = self.mapping.get(key)
        if idx is not None:
            return idx
        if self._frozen:
            raise UnknownEntityError(self.kind, raw_id)
        idx = len(self.reverse_mapping)
        self.mapping[key] = idx
        self.reverse_mapping.append(key)
        return idx

    def encode_many(self, raw_ids: Iterable[Any]) -> np.ndarray:
        return np.fromiter((self.encode(r) for r in raw_ids), dtype=np.int64)

    def lookup(self, raw_id: Any) -> Optional[int]:
        """Index of raw_id, or None if unknown. Never grows the vocabulary."""
        return self.mapping.get(normalize_id(raw_id))

    def decode(self, index: int) -> Hashable:
        if index < 0 or index >= len(self.reverse_mapping):
            raise IndexError(f"{self.kind} index {index} out of range [0, {len(self.reverse_mapping)})")
        return self.reverse_mapping[index]

    def freeze(self) -> "IdEncoder":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self):
        return len(self.reverse_mapping)

    def __contains__(self, raw_id):
        return normalize_id(raw_id) in self.mapping

    def __repr__(self):
        state = "frozen" if self._frozen else "open"
        return f"IdEncoder(kind={self.kind!r}, size={len(self)}, {state})"


class RatingDataset:
    """
    Ordered (user_index, item_index, label) triples.

    Arrays are aligned and share the encoders that produced the indices.
    """

    def __init__(self, user_indices: np.ndarray, item_indices: np.ndarray,
                 labels: np.ndarray, user_encoder: IdEncoder, item_encoder: IdEncoder):
        user_indices = np.asarray(user_indices, dtype=np.int64)
        item_indices = np.asarray(item_indices, dtype=np.int64)
        labels = np.asarray(labels, dtype=np.float64)
        if not (len(user_indices) == len(item_indices) == len(labels)):
            raise DataFormatError(
                f"Misaligned triples: {len(user_indices)} users, "
                f"{len(item_indices)} items, {len(labels)} labels"
            )
        self.user_indices = user_indices
        self.item_indices = item_indices
        self.labels = labels
        self.user_encoder = user_encoder
        self.item_encoder = item_encoder

    def __len__(self):
        return len(self.labels)

    def __iter__(self):
        for u, i, r in zip(self.user_indices, self.item_indices, self.labels):
            yield int(u), int(i), float(r)

    @property
    def n_users(self) -> int:
        return len(self.user_encoder)

    @property
    def n_items(self) -> int:
        return len(self.item_encoder)

    @property
    def global_mean(self) -> float:
        if len(self.labels) == 0:
            return float("nan")
        return float(self.labels.mean())

    def to_csr(self, transpose: bool = False) -> csr_matrix:
        """
        Sparse user x item rating matrix (item x user if transpose).

        Built from (data, indices, indptr) so repeated (user, item) pairs
        stay separate entries instead of being summed.
        """
        rows, cols = self.user_indices, self.item_indices
        n_rows, n_cols = self.n_users, self.n_items
        if transpose:
            rows, cols = cols, rows
            n_rows, n_cols = n_cols, n_rows

        order = np.argsort(rows, kind="stable")
        indptr = np.zeros(n_rows + 1, dtype=np.int64)
        np.cumsum(np.bincount(rows, minlength=n_rows), out=indptr[1:])

        return csr_matrix(
            (self.labels[order], cols[order], indptr),
            shape=(n_rows, n_cols),
            dtype=np.float64
        )

    def sparsity(self) -> float:
        cells = self.n_users * self.n_items
        if cells == 0:
            return float("nan")
        return 1 - (len(self) / cells)


def build_rating_dataset(ratings_df: pd.DataFrame,
                         user_encoder: Optional[IdEncoder] = None,
                         item_encoder: Optional[IdEncoder] = None) -> RatingDataset:
    """
    Encode a ratings DataFrame into a RatingDataset.

    Args:
        ratings_df: DataFrame with columns: user_id, movie_id, rating
        user_encoder: Existing user vocabulary (a fresh one is built if None)
        item_encoder: Existing movie vocabulary (a fresh one is built if None)

    Returns:
        RatingDataset whose encoders contain every ID in ratings_df

    Raises:
        DataFormatError: If required columns are missing
        UnknownEntityError: If a passed encoder is frozen and an ID is new

    Example:
        >>> train_ds = build_rating_dataset(train_df)
        >>> print(train_ds.n_users, train_ds.n_items)
        610 9724
    """
    missing = {"user_id", "movie_id", "rating"} - set(ratings_df.columns)
    if missing:
        raise DataFormatError(f"ratings DataFrame is missing columns: {sorted(missing)}")

    if user_encoder is None:
        user_encoder = IdEncoder("user")
    if item_encoder is None:
        item_encoder = IdEncoder("item")

    user_indices = user_encoder.encode_many(ratings_df["user_id"].tolist())
    item_indices = item_encoder.encode_many(ratings_df["movie_id"].tolist())
    labels = ratings_df["rating"].to_numpy(dtype=np.float64)

    return RatingDataset(user_indices, item_indices, labels, user_encoder, item_encoder)


def calculate_global_statistics(dataset: RatingDataset) -> Dict:
    """
    Summary statistics of a training dataset.

    Returns:
        Dict with n_users, n_items, n_ratings, global_mean, sparsity
    """
    return {
        "n_users": dataset.n_users,
        "n_items": dataset.n_items,
        "n_ratings": len(dataset),
        "global_mean": dataset.global_mean,
        "sparsity": dataset.sparsity(),
    }
