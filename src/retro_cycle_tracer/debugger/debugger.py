# retro_cycle_tracer/debugger/debugger.py
"""
デバッガモジュール。

CPUをティック単位または命令単位で進め、ブレークポイントの条件が成立した時点で実行を止めます。
条件は各ティックの Snapshot（状態とバスアクティビティ）だけから判定します。
"""
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

from retro_cycle_tracer.core.cpu import AbstractCpu
from retro_cycle_tracer.core.snapshot import Snapshot
from retro_cycle_tracer.core.state import CpuState
from retro_cycle_tracer.transport.bus import BusAccessType

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 4096

# 表示名（レジスタマップのキー）から状態フィールドへの別名
_REGISTER_ALIASES = {"s": "sp", "p": "status"}

class BreakpointConditionType(Enum):
    PC_MATCH = "PC_MATCH"               # 命令境界でのPC一致
    MEMORY_READ = "MEMORY_READ"
    MEMORY_WRITE = "MEMORY_WRITE"
    REGISTER_VALUE = "REGISTER_VALUE"
    REGISTER_CHANGE = "REGISTER_CHANGE"
    STATE_ENTER = "STATE_ENTER"         # 状態IDへの遷移（同じ状態に留まる間は再ヒットしない）

# @intent:data_structure ブレークポイント1件。種類ごとに使うフィールドが異なり、残りは None のままです。
# @intent:rationale 等価比較で登録・削除するため frozen にしています。
@dataclass(frozen=True)
class BreakpointCondition:
    condition_type: BreakpointConditionType
    value: Optional[int] = None
    address: Optional[int] = None
    register_name: Optional[str] = None
    state_name: Optional[str] = None
    enabled: bool = True

def _register_value(state: CpuState, name: str) -> Optional[int]:
    attr = _REGISTER_ALIASES.get(name.lower(), name.lower())
    if not hasattr(state, attr):
        return None
    return int(getattr(state, attr))

def _touches(snapshot: Snapshot, address: Optional[int], access_type: BusAccessType) -> bool:
    return any(access.address == address and access.access_type == access_type
               for access in snapshot.bus_activity)

# @intent:responsibility ブレークポイント管理と、停止条件付きの実行ループを提供します。
class Debugger:
    """
    直近 `history_limit` ティック分の Snapshot を履歴として保持します。
    """
    def __init__(self, cpu: AbstractCpu, history_limit: int = DEFAULT_HISTORY_LIMIT):
        if history_limit <= 0:
            raise ValueError("history_limit must be a positive integer.")
        self._cpu = cpu
        self._breakpoints: List[BreakpointCondition] = []
        self._running = False
        self._previous_state: CpuState = cpu.get_state()
        self._previous_state_name: Optional[str] = None
        self._last_snapshot: Optional[Snapshot] = None
        self._last_hit: Optional[BreakpointCondition] = None
        self._history: Deque[Snapshot] = deque(maxlen=history_limit)
        self._predicates: Dict[BreakpointConditionType, Callable[[BreakpointCondition, Snapshot], bool]] = {
            BreakpointConditionType.PC_MATCH: self._pc_match,
            BreakpointConditionType.MEMORY_READ:
                lambda bp, snap: _touches(snap, bp.address, BusAccessType.READ),
            BreakpointConditionType.MEMORY_WRITE:
                lambda bp, snap: _touches(snap, bp.address, BusAccessType.WRITE),
            BreakpointConditionType.REGISTER_VALUE: self._register_equals,
            BreakpointConditionType.REGISTER_CHANGE: self._register_changed,
            BreakpointConditionType.STATE_ENTER: self._state_entered,
        }

    # 重複登録は無視
    def add_breakpoint(self, condition: BreakpointCondition) -> None:
        if condition not in self._breakpoints:
            self._breakpoints.append(condition)

    def update_breakpoint(self, old_condition: BreakpointCondition, new_condition: BreakpointCondition) -> None:
        try:
            self._breakpoints[self._breakpoints.index(old_condition)] = new_condition
        except ValueError:
            pass

    def remove_breakpoint(self, condition: BreakpointCondition) -> None:
        if condition in self._breakpoints:
            self._breakpoints.remove(condition)

    def get_breakpoints(self) -> List[BreakpointCondition]:
        return list(self._breakpoints)

    # 古い順
    def get_history(self) -> List[Snapshot]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def get_last_snapshot(self) -> Optional[Snapshot]:
        return self._last_snapshot

    @property
    def last_hit(self) -> Optional[BreakpointCondition]:
        return self._last_hit

    def _pc_match(self, bp: BreakpointCondition, snapshot: Snapshot) -> bool:
        return self._cpu.is_at_instruction_boundary() and snapshot.state.pc == bp.value

    def _register_equals(self, bp: BreakpointCondition, snapshot: Snapshot) -> bool:
        return bool(bp.register_name) and _register_value(snapshot.state, bp.register_name) == bp.value

    def _register_changed(self, bp: BreakpointCondition, snapshot: Snapshot) -> bool:
        if not bp.register_name:
            return False
        current = _register_value(snapshot.state, bp.register_name)
        return current is not None and current != _register_value(self._previous_state, bp.register_name)

    def _state_entered(self, bp: BreakpointCondition, snapshot: Snapshot) -> bool:
        name = snapshot.metadata.state_name
        return name == bp.state_name and name != self._previous_state_name

    # @intent:responsibility 有効なブレークポイントを登録順に評価し、最初に成立した条件を返します。
    def check_breakpoints(self, snapshot: Snapshot) -> Optional[BreakpointCondition]:
        for bp in self._breakpoints:
            if bp.enabled and self._predicates[bp.condition_type](bp, snapshot):
                return bp
        return None

    def _observe(self, snapshot: Snapshot) -> None:
        self._last_snapshot = snapshot
        self._history.append(snapshot)

    def _advance(self, snapshot: Snapshot) -> None:
        self._previous_state = snapshot.state
        self._previous_state_name = snapshot.metadata.state_name

    def tick(self) -> Snapshot:
        snapshot = self._cpu.tick()
        self._observe(snapshot)
        self._advance(snapshot)
        return snapshot

    # @intent:responsibility 次の命令境界まで実行し、その間の Snapshot を返します。ブレークポイントは評価しません。
    def step_instruction(self) -> List[Snapshot]:
        snapshots = self._cpu.step_instruction()
        for snapshot in snapshots:
            self._observe(snapshot)
        if snapshots:
            self._advance(snapshots[-1])
        return snapshots

    # @intent:responsibility ブレークポイント成立、停止状態への到達、max_ticks のいずれかまで実行します。
    def run(self, max_ticks: int = 100000) -> Optional[BreakpointCondition]:
        """
        最低1ティックは進めるので、ブレークポイント上から再開しても同じ位置で止まり続けることはありません。
        成立した条件を返し、なければ None を返します。
        """
        self._running = True
        self._last_hit = None

        for _ in range(max_ticks):
            if not self._running:
                break
            snapshot = self._cpu.tick()
            self._observe(snapshot)
            hit = self.check_breakpoints(snapshot)
            self._advance(snapshot)
            if hit is not None:
                self._last_hit = hit
                logger.info("Breakpoint %s hit at tick %d (PC: %#06x)",
                            hit.condition_type.value, snapshot.metadata.tick_count, snapshot.state.pc)
                break
            if self._cpu.is_parked():
                logger.info("Execution parked in %s at tick %d",
                            snapshot.metadata.state_name, snapshot.metadata.tick_count)
                break

        self._running = False
        return self._last_hit

    def stop(self) -> None:
        self._running = False
