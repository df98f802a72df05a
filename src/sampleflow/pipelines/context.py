"""
Checkpoint context for pausing and resuming stage iterators.

The CheckpointContext is a flat key-value store that iterators write their
resumption state into. Keys are namespaced by iterator prefix, so nested
stages can share one context without colliding:

    Iterator::Sampling:num_random_samples
    Iterator::Sampling::Range:next
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from pathlib import Path
import pickle


class CheckpointError(RuntimeError):
    """Raised when checkpoint state is missing or malformed on restore."""


def full_name(prefix: str, key: str) -> str:
    """Namespace ``key`` under an iterator ``prefix``."""
    return f"{prefix}:{key}"


class CheckpointContext:
    """
    Key-value sink/source for iterator checkpoints.

    Values are scalars (ints or strings). Writers call ``write_scalar``;
    readers call ``read_scalar``, which refuses to invent a value for a key
    that was never written.

    Example:
        >>> ctx = CheckpointContext()
        >>> ctx.write_scalar('Iterator::Range:next', 4)
        >>> ctx.read_scalar('Iterator::Range:next')
        4
    """

    def __init__(self, initial_data: Optional[Dict[str, Any]] = None):
        """
        Initialize context.

        Args:
            initial_data: Optional initial key-value pairs.
        """
        self._data: Dict[str, Any] = dict(initial_data or {})

    def __getitem__(self, key: str) -> Any:
        """Get value by key."""
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        """Set value by key."""
        self._data[key] = value

    def __contains__(self, key: str) -> bool:
        """Check if key exists."""
        return key in self._data

    def __len__(self) -> int:
        """Number of keys in context."""
        return len(self._data)

    def __repr__(self) -> str:
        """String representation."""
        keys = list(self._data.keys())
        return f"CheckpointContext(keys={keys})"

    def write_scalar(self, key: str, value: int | str) -> None:
        """
        Write a scalar checkpoint entry.

        Args:
            key: Fully namespaced key.
            value: Integer or string value.

        Raises:
            TypeError: If value is not an int or str.
        """
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise TypeError(f"Checkpoint scalar for '{key}' must be int or str, got {type(value).__name__}")
        self._data[key] = value

    def read_scalar(self, key: str) -> int | str:
        """
        Read a scalar checkpoint entry.

        Args:
            key: Fully namespaced key.

        Returns:
            The stored value.

        Raises:
            CheckpointError: If the key was never written.
        """
        if key not in self._data:
            raise CheckpointError(f"Checkpoint is missing required entry '{key}'")
        return self._data[key]

    def read_int(self, key: str) -> int:
        """Read a scalar entry that must be an integer."""
        value = self.read_scalar(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise CheckpointError(f"Checkpoint entry '{key}' must be an int, got {type(value).__name__}")
        return value

    def contains(self, key: str) -> bool:
        return key in self._data

    def keys(self) -> List[str]:
        """Get all keys in context."""
        return list(self._data.keys())

    def items(self) -> List[tuple]:
        """Get all key-value pairs."""
        return list(self._data.items())

    def with_prefix(self, prefix: str) -> Dict[str, Any]:
        """Entries whose key belongs to ``prefix`` or one of its nested iterators."""
        return {k: v for k, v in self._data.items() if k.startswith(f"{prefix}:")}

    def clear(self) -> None:
        self._data.clear()

    def save(self, path: str | Path) -> None:
        """
        Save context to disk.

        Args:
            path: Path to save file.
        """
        path = Path(path)
        with open(path, "wb") as f:
            pickle.dump(self._data, f)

    @classmethod
    def load(cls, path: str | Path) -> CheckpointContext:
        """
        Load context from disk.

        Args:
            path: Path to load from.

        Returns:
            Loaded CheckpointContext instance.

        Raises:
            CheckpointError: If the file does not hold a checkpoint mapping.
        """
        path = Path(path)
        with open(path, "rb") as f:
            data = pickle.load(f)
        if not isinstance(data, dict):
            raise CheckpointError(f"{path} does not contain a checkpoint mapping")
        return cls(initial_data=data)

    def summary(self) -> Dict[str, Any]:
        """
        Get summary of context contents.

        Returns:
            Dictionary mapping each key to its value type name.
        """
        return {key: type(value).__name__ for key, value in self._data.items()}

    def copy(self) -> CheckpointContext:
        """Create a copy of the context."""
        return CheckpointContext(initial_data=self._data.copy())
