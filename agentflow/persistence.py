from typing import List, Optional

from .state import ExecutionSnapshot, ExecutionState


class SnapshotStack:
    """Undo history for steering. Snapshots are taken before every destructive
    command and live only as long as the run (nothing is written to disk)."""

    def __init__(self, limit: int = 20):
        self.limit = limit
        self._stack: List[ExecutionSnapshot] = []

    def push(self, state: ExecutionState, label: str) -> ExecutionSnapshot:
        snap = state.snapshot(label)
        self._stack.append(snap)
        if len(self._stack) > self.limit:
            self._stack.pop(0)
        return snap

    def pop(self) -> Optional[ExecutionSnapshot]:
        return self._stack.pop() if self._stack else None

    def peek(self) -> Optional[ExecutionSnapshot]:
        return self._stack[-1] if self._stack else None

    def labels(self) -> List[str]:
        return [s.label for s in self._stack]

    def clear(self) -> None:
        self._stack.clear()

    def __len__(self) -> int:
        return len(self._stack)
