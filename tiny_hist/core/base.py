"""
Base classes and interfaces for tiny-hist distribution summaries.

This module defines the abstract base class that distribution summaries
implement to provide a consistent interface: accumulating weighted values,
querying, merging with other summaries, and serialization to a dictionary
or a compact binary record.
"""

import abc
import itertools
import json
import sys
from typing import Any, Dict, Generic, TypeVar, Union

T = TypeVar("T")  # Type for the values being accumulated
R = TypeVar("R")  # Type for the result of queries

# Process-wide diagnostic ids. Only used to tag log messages.
_summary_ids = itertools.count()


class DistributionSummary(Generic[T, R], abc.ABC):
    """
    Abstract base class for weighted distribution summaries.

    A summary accumulates weighted values, answers queries about the
    distribution they describe, merges with summaries of the same type and
    round-trips through a dictionary or a binary record.
    """

    def __init__(self) -> None:
        """Initialize a new summary and assign its diagnostic id."""
        self._id = next(_summary_ids)
        self._items_processed = 0

    @property
    def id(self) -> int:
        """Diagnostic id of this summary (unique within the process)."""
        return self._id

    @property
    def items_processed(self) -> int:
        """Get the total number of values staged through update()."""
        return self._items_processed

    @abc.abstractmethod
    def update(self, value: T, weight: float = 1.0) -> None:
        """
        Stage a weighted value.

        Args:
            value: The value observed.
            weight: The weight of the observation.
        """
        self._items_processed += 1

    @abc.abstractmethod
    def query(self, *args: Any, **kwargs: Any) -> R:
        """
        Query the summary.

        The parameters and return value depend on the specific summary.
        """
        pass

    @abc.abstractmethod
    def merge(self, other: "DistributionSummary[T, R]") -> "DistributionSummary[T, R]":
        """
        Merge this summary with another of the same type.

        Args:
            other: Another summary of the same type.

        Returns:
            A new merged summary; neither operand is modified.

        Raises:
            TypeError: If other is not of the same type.
        """
        pass

    def _check_same_type(self, other: "DistributionSummary[T, R]") -> None:
        """
        Check that another summary is of the same type.

        Raises:
            TypeError: If other is not of the same type.
        """
        if not isinstance(other, self.__class__):
            raise TypeError(f"Cannot merge with {other.__class__.__name__}")

    @abc.abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Convert the summary to a dictionary for serialization."""
        pass

    def _base_dict(self) -> Dict[str, Any]:
        """Dictionary with the attributes common to all summaries."""
        return {
            "type": self.__class__.__name__,
            "items_processed": self._items_processed,
        }

    @classmethod
    @abc.abstractmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistributionSummary[T, R]":
        """Create a summary from a dictionary representation."""
        pass

    @abc.abstractmethod
    def to_bytes(self, record_id: int = 0) -> bytes:
        """Encode the summary as a binary record."""
        pass

    @classmethod
    @abc.abstractmethod
    def from_bytes(cls, data: bytes, **kwargs: Any) -> "DistributionSummary[T, R]":
        """Decode a summary from a binary record."""
        pass

    def serialize(self, format: str = "json", **kwargs: Any) -> Union[str, bytes]:
        """
        Serialize the summary to a string or bytes.

        Args:
            format: The serialization format ('json' or 'binary').
            **kwargs: Passed to to_bytes() for the binary format.

        Returns:
            The serialized representation of the summary.

        Raises:
            ValueError: If the format is not supported.
        """
        if format == "json":
            return json.dumps(self.to_dict())
        elif format == "binary":
            return self.to_bytes(**kwargs)
        else:
            raise ValueError(f"Unsupported serialization format: {format}")

    @classmethod
    def deserialize(
        cls, data: Union[str, bytes], format: str = "json", **kwargs: Any
    ) -> "DistributionSummary[T, R]":
        """
        Deserialize a summary from a string or bytes.

        Args:
            data: The serialized summary.
            format: The serialization format ('json' or 'binary').
            **kwargs: Passed to from_bytes() for the binary format (the
                binary record does not carry schema-level settings).

        Returns:
            A new summary.

        Raises:
            ValueError: If the format is not supported.
        """
        if format == "json":
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            return cls.from_dict(json.loads(data))
        elif format == "binary":
            if isinstance(data, str):
                raise ValueError("Binary records must be given as bytes")
            return cls.from_bytes(data, **kwargs)
        else:
            raise ValueError(f"Unsupported serialization format: {format}")

    def estimate_size(self) -> int:
        """
        Estimate the current memory usage of this summary in bytes.

        This is a rough figure: the object, its instance dictionary, and
        whatever derived classes add for their own buffers.
        """
        size = sys.getsizeof(self)
        if hasattr(self, "__dict__"):
            size += sys.getsizeof(self.__dict__)
        return size

    def clear(self) -> None:
        """
        Reset the summary to its initial empty state.

        Derived classes must call super().clear() after clearing their own
        data structures.
        """
        self._items_processed = 0

    def get_stats(self) -> Dict[str, Any]:
        """
        Get diagnostic figures about the current state of the summary.

        Derived classes extend the dictionary with their own figures.
        """
        return {
            "type": self.__class__.__name__,
            "id": self._id,
            "items_processed": self._items_processed,
            "memory_bytes": self.estimate_size(),
        }
