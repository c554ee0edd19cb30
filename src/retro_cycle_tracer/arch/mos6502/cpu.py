# src/retro_cycle_tracer/arch/mos6502/cpu.py
"""
MOS 6502 CPUエミュレーションの中心モジュール。

純粋な状態遷移関数 `engine.transition()` を毎ティック呼び出し、
確定した状態のバス出力でメモリバスをクロックします。
オプションのブートストラップ（EEPROMローダー）が有効な場合は、転送完了までそちらがバスを駆動します。
"""
import logging
from typing import Dict, List, Optional

from retro_cycle_tracer.common.types import DisassemblyLine, RegisterLayoutInfo, RegisterInfo
from retro_cycle_tracer.core.cpu import AbstractCpu
from retro_cycle_tracer.transport.bus import MemoryBus
from retro_cycle_tracer.loader.eeprom import EepromLoader
from retro_cycle_tracer.arch.mos6502.decoder import OPCODE_MAP
from retro_cycle_tracer.arch.mos6502.engine import EngineConfig, TickInputs, initial_state, transition
from retro_cycle_tracer.arch.mos6502.state import Mos6502CpuState, StateId

logger = logging.getLogger(__name__)

# @intent:responsibility MOS 6502 互換の実行エンジンをティック単位で駆動する。
class Mos6502Cpu(AbstractCpu):
    """
    MOS 6502 互換CPU。リセット入力はHALT入力より優先され、毎ティックサンプリングされます。
    """
    def __init__(self, bus: MemoryBus, config: Optional[EngineConfig] = None,
                 bootstrap: Optional[EepromLoader] = None):
        self._config = config or EngineConfig()
        self._bootstrap = bootstrap
        self._engine_ticked = False
        super().__init__(bus)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def bootstrap(self) -> Optional[EepromLoader]:
        return self._bootstrap

    def _create_initial_state(self) -> Mos6502CpuState:
        return initial_state(self._config)

    def reset(self) -> None:
        super().reset()
        if self._bootstrap is not None:
            self._bootstrap.reset()

    def get_state(self) -> Mos6502CpuState:
        return self._state

    @property
    def state_id(self) -> StateId:
        return self._state.state

    @property
    def halted(self) -> bool:
        return self._state.state == StateId.HALTED

    @property
    def trapped(self) -> bool:
        return self._state.state == StateId.ERROR_TRAP

    # @intent:responsibility 1ティック分の遷移とバスクロック。
    def _advance(self) -> None:
        self._engine_ticked = False
        if self._reset_line:
            if self._state.state != StateId.RESET:
                logger.info("Reset asserted in state %s", self._state.state.value)
            if self._bootstrap is not None:
                self._bootstrap.reset()
            self._state = transition(self._state, TickInputs(reset=True), self._config)
            self._bus.clock(self._state.bus_request())
            return

        if self._bootstrap is not None and not self._bootstrap.finished:
            self._bus.clock(self._bootstrap.tick())
            return

        previous = self._state
        inputs = TickInputs(data_out=self._bus.data_out, halt=self._halt_line)
        self._state = transition(previous, inputs, self._config)
        self._engine_ticked = True
        self._log_transition(previous, self._state)
        self._bus.clock(self._state.bus_request())

    def _log_transition(self, previous: Mos6502CpuState, current: Mos6502CpuState) -> None:
        if previous.state == current.state:
            return
        if current.state == StateId.ERROR_TRAP:
            logger.warning("Illegal opcode $%02X at $%04X; engine trapped until reset",
                           previous.instruction, (previous.pc - 1) & 0xFFFF)
        elif current.state == StateId.HALTED:
            logger.debug("Halted at $%04X", current.pc)
        elif previous.state == StateId.HALTED:
            logger.debug("Resumed at $%04X", current.pc)
        elif previous.state == StateId.DISPATCH and current.state == StateId.FETCH_OPCODE_REQUEST:
            logger.debug("Opcode $%02X at $%04X has no handler; skipped",
                         previous.instruction, (previous.pc - 1) & 0xFFFF)

    def _at_instruction_boundary(self) -> bool:
        return self._state.state == StateId.FETCH_OPCODE_REQUEST

    def _opcode_fetched(self) -> bool:
        return self._engine_ticked and self._state.state == StateId.FETCH_OPCODE_CAPTURE

    def _is_parked(self) -> bool:
        return self._state.state in (StateId.HALTED, StateId.ERROR_TRAP)

    def _state_name(self) -> str:
        return self._state.state.value

    def _symbol_info(self) -> Optional[str]:
        if not self._opcode_fetched():
            return None
        # オペコードフェッチ時のバスアドレスが命令の先頭
        return self._reverse_symbol_map.get(self._state.address)

    # @intent:responsibility 実行を指定ティック数まで、または命令境界に `address` が来るまで進める。
    def run_until_pc(self, address: int, max_ticks: int = 100000) -> bool:
        for _ in range(max_ticks):
            self.tick()
            if self._at_instruction_boundary() and self._state.pc == address:
                return True
            if self.trapped:
                return False
        return False

    # @intent:responsibility レジスタマップ（表示用）を返す。SPは8bitの生の値。
    def get_register_map(self) -> Dict[str, int]:
        state = self._state
        return {
            "A": state.a,
            "X": state.x,
            "Y": state.y,
            "PC": state.pc,
            "S": state.sp,
            "P": state.status,
        }

    def get_flag_state(self) -> Dict[str, bool]:
        state = self._state
        return {
            "N": state.negative,
            "V": state.overflow,
            "B": state.break_,
            "D": state.decimal,
            "I": state.interrupt_disable,
            "Z": state.zero,
            "C": state.carry,
        }

    def get_register_layout(self) -> List[RegisterLayoutInfo]:
        return [
            RegisterLayoutInfo("Registers", [
                RegisterInfo("A", 8),
                RegisterInfo("X", 8),
                RegisterInfo("Y", 8),
                RegisterInfo("P", 8)
            ]),
            RegisterLayoutInfo("Pointers", [
                RegisterInfo("PC", 16),
                RegisterInfo("S", 8)
            ])
        ]

    def disassemble(self, start_addr: int, length: int) -> List[DisassemblyLine]:
        from retro_cycle_tracer.arch.mos6502 import disassembler
        return disassembler.disassemble(self._bus, start_addr, length)

    # @intent:responsibility 現在の命令（フェッチ済みの場合）のニーモニックを返す。
    def current_mnemonic(self) -> Optional[str]:
        entry = OPCODE_MAP.get(self._state.instruction)
        return entry.mnemonic if entry else None
