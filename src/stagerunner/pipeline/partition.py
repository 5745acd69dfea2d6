"""
Partition a stage's work units into batches.

Each batch becomes one worker script. Partitioning is a pure function of
(units, batch_size, mode): restarts match scripts from an earlier attempt by
path, so the same inputs must always produce the same batch boundaries and ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

from stagerunner.errors import EmptyInputError
from stagerunner.stage.models import ExecutionMode


@dataclass(frozen=True)
class Batch:
    """
    A contiguous group of work units materialized as one worker script.

    Attributes:
        position: 0-based position of the batch in its plan
        batch_id: Zero-padded identifier used in the worker script name
        units: Work units in original order
    """

    position: int
    batch_id: str
    units: tuple[tuple[str, ...], ...]

    def commands(self) -> list[str]:
        """All command lines of the batch, unit by unit."""
        return [command for unit in self.units for command in unit]


@dataclass(frozen=True)
class BatchPlan:
    """
    Ordered batches computed from a work unit list.

    Attributes:
        batches: Batches in execution order
        batch_size: Requested batch size (<= 0 means a single batch)
        mode: Execution mode the plan was computed for
    """

    batches: tuple[Batch, ...]
    batch_size: int
    mode: ExecutionMode

    def __iter__(self) -> Iterator[Batch]:
        return iter(self.batches)

    def __len__(self) -> int:
        return len(self.batches)

    def units(self) -> list[tuple[str, ...]]:
        """Every work unit in plan order."""
        return [unit for batch in self.batches for unit in batch.units]


def batch_count(num_units: int, batch_size: int) -> int:
    """
    Number of batches for num_units units.

    Floor division with a minimum of one: 5 units with batch_size=2 make
    2 batches, and the last one holds 3 units.
    """
    if batch_size <= 0:
        return 1
    return num_units // batch_size or 1


def partition(
    units: Sequence[Sequence[str]],
    batch_size: int,
    mode: ExecutionMode = ExecutionMode.LOCAL,
) -> BatchPlan:
    """
    Split work units into batches.

    With batch_size <= 0, or in container mode where every container is
    already an isolated unit, all units go into one batch. Otherwise
    units are dealt batch_size per batch and the final batch absorbs the
    remainder instead of spilling into an extra, smaller batch.

    Parameters:
        units: Work units, each a non-empty list of command lines
        batch_size: Units per batch
        mode: Execution mode of the stage

    Returns:
        BatchPlan with ids zero-padded to the width of the largest id

    Raises:
        EmptyInputError: If units is empty or any unit has no commands

    Example:
        >>> plan = partition([["run A"], ["run B"], ["run C"]], 1)
        >>> [b.batch_id for b in plan]
        ['0', '1', '2']
    """
    if not units:
        raise EmptyInputError("A stage must provide at least one work unit.")
    for i, unit in enumerate(units):
        if not unit:
            raise EmptyInputError(f"Work unit {i} has no commands.")

    frozen = [tuple(unit) for unit in units]
    effective_size = len(frozen) if mode is ExecutionMode.CONTAINER else batch_size
    num_batches = batch_count(len(frozen), effective_size)
    width = len(str(num_batches - 1))

    batches: list[Batch] = []
    for position in range(num_batches):
        start = position * effective_size if num_batches > 1 else 0
        end = start + effective_size if position < num_batches - 1 else len(frozen)
        batches.append(
            Batch(
                position=position,
                batch_id=f"{position:0{width}d}",
                units=tuple(frozen[start:end]),
            )
        )

    return BatchPlan(batches=tuple(batches), batch_size=batch_size, mode=mode)
