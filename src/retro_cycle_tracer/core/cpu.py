# retro_cycle_tracer/core/cpu.py
"""
Core Layer (抽象CPU)

このモジュールは、CPUの状態管理とティック単位の実行駆動に関する抽象化を提供します。
1ティックの具体的な状態遷移はアーキテクチャ層に移譲されます。
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from retro_cycle_tracer.transport.bus import MemoryBus
from retro_cycle_tracer.core.snapshot import Snapshot, Metadata
from retro_cycle_tracer.core.state import CpuState
from retro_cycle_tracer.common.types import DisassemblyLine, SymbolMap, RegisterLayoutInfo

# @intent:responsibility ティック駆動のCPUに共通する入力線・カウンタ・Snapshot生成をまとめます。
class AbstractCpu(ABC):
    """
    アーキテクチャ固有のCPUはこのクラスを継承し、1ティック分の遷移だけを実装します。
    リセット入力とHALT入力はレベルで保持し、各ティックで参照されます。
    """
    # @intent:pre-condition `bus`は有効なMemoryBusオブジェクトである必要があります。
    def __init__(self, bus: MemoryBus):
        self._bus = bus
        self._state: CpuState = self._create_initial_state()
        self._tick_count: int = 0
        self._instruction_count: int = 0
        self._reset_line: bool = False
        self._halt_line: bool = False
        self._symbol_map: SymbolMap = {}
        self._reverse_symbol_map: Dict[int, str] = {}

    # @intent:responsibility アセンブラが出力したラベルを登録します。逆引き表も同時に作ります。
    def set_symbol_map(self, symbol_map: SymbolMap) -> None:
        self._symbol_map = symbol_map
        self._reverse_symbol_map = {addr: name for name, addr in symbol_map.items()}

    def get_symbol_map(self) -> SymbolMap:
        return self._symbol_map

    @abstractmethod
    def _create_initial_state(self) -> CpuState:
        """
        電源投入直後（ブート待ち）の状態を返します。
        """
        pass

    # @intent:responsibility 電源投入相当のリセット。状態とカウンタを初期化します。
    def reset(self) -> None:
        self._state = self._create_initial_state()
        self._tick_count = 0
        self._instruction_count = 0

    # @intent:responsibility リセット入力（レベル）を設定します。毎ティックサンプリングされます。
    def set_reset(self, level: bool) -> None:
        self._reset_line = bool(level)

    # @intent:responsibility HALT入力（レベル）を設定します。
    def set_halt(self, level: bool) -> None:
        self._halt_line = bool(level)

    def get_state(self) -> CpuState:
        return self._state

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def instruction_count(self) -> int:
        return self._instruction_count

    # @intent:responsibility 1ティック分の状態遷移を行い、バスをクロックします。
    @abstractmethod
    def _advance(self) -> None:
        pass

    # @intent:responsibility 状態が命令境界（次の命令のフェッチ直前）にあるかを返します。
    @abstractmethod
    def _at_instruction_boundary(self) -> bool:
        pass

    # @intent:responsibility 直前のティックでオペコードがフェッチされたかを返します。
    @abstractmethod
    def _opcode_fetched(self) -> bool:
        pass

    # @intent:responsibility 外部入力なしには進まない状態（HALT中、エラートラップ）にあるかを返します。
    @abstractmethod
    def _is_parked(self) -> bool:
        pass

    def is_at_instruction_boundary(self) -> bool:
        return self._at_instruction_boundary()

    def is_parked(self) -> bool:
        return self._is_parked()

    def _state_name(self) -> str:
        return ""

    def _symbol_info(self) -> Optional[str]:
        return None

    # @intent:responsibility CPUを1ティック進め、その結果のスナップショットを返します。
    # @intent:rationale Template Methodパターン（ログクリア→状態遷移とバスクロック→カウンタ更新→Snapshot生成）。
    def tick(self) -> Snapshot:
        self._bus.get_and_clear_activity_log()
        self._advance()
        self._tick_count += 1
        if self._opcode_fetched():
            self._instruction_count += 1
        return Snapshot(
            state=self._state,
            metadata=Metadata(
                tick_count=self._tick_count,
                instruction_count=self._instruction_count,
                state_name=self._state_name(),
                symbol_info=self._symbol_info(),
            ),
            bus_activity=self._bus.get_and_clear_activity_log(),
        )

    # @intent:responsibility 指定ティック数だけ実行し、各ティックのスナップショットを返します。
    def run(self, ticks: int) -> List[Snapshot]:
        return [self.tick() for _ in range(ticks)]

    # @intent:responsibility 次の命令境界に到達するまで実行します。
    # @intent:post-condition 停止状態に入った場合や max_ticks を超えた場合もそこで戻ります。
    def step_instruction(self, max_ticks: int = 64) -> List[Snapshot]:
        """
        現在の位置から、少なくとも1ティック進めた後、次に命令境界へ戻るまでのスナップショットを返します。
        """
        snapshots = [self.tick()]
        while len(snapshots) < max_ticks:
            if self._at_instruction_boundary() or self._is_parked():
                break
            snapshots.append(self.tick())
        return snapshots

    @abstractmethod
    def get_register_map(self) -> Dict[str, int]:
        """
        表示名をキーにしたレジスタ値。
        """
        pass

    @abstractmethod
    def get_register_layout(self) -> List[RegisterLayoutInfo]:
        pass

    @abstractmethod
    def get_flag_state(self) -> Dict[str, bool]:
        pass

    @abstractmethod
    def disassemble(self, start_addr: int, length: int) -> List[DisassemblyLine]:
        """
        指定されたメモリ範囲を逆アセンブルし、DisassemblyLine のリストを返す。
        """
        pass
