# tests/core/test_cpu.py
"""
retro_cycle_tracer.core.cpuモジュールの単体テスト。
"""
import pytest
from typing import Dict, List, Tuple

from retro_cycle_tracer.core.state import CpuState
from retro_cycle_tracer.core.cpu import AbstractCpu
from retro_cycle_tracer.transport.bus import MemoryBus, RAM, BusRequest, BusAccessType
from retro_cycle_tracer.common.types import RegisterLayoutInfo, RegisterInfo

# @intent:test_suite CPUの状態管理と抽象CPUのティック駆動フローを検証します。

class CounterCpu(AbstractCpu):
    """
    1ティックごとにPCの位置を読み出してPCを1進める、検証用の最小CPU。
    PCが3の倍数の位置を命令境界とし、0xFFを読んだら停止する。
    """
    def __init__(self, bus: MemoryBus):
        super().__init__(bus)
        self._parked = False

    def _create_initial_state(self) -> CpuState:
        return CpuState(pc=0x0000, sp=0x00)

    def _advance(self) -> None:
        if self._parked:
            return
        data = self._bus.clock(BusRequest(address=self._state.pc))
        self._parked = data == 0xFF
        self._state = self._state.replace(pc=(self._state.pc + 1) & 0xFFFF)

    def _at_instruction_boundary(self) -> bool:
        return self._state.pc % 3 == 0

    def _opcode_fetched(self) -> bool:
        return self._state.pc % 3 == 1

    def _is_parked(self) -> bool:
        return self._parked

    def _state_name(self) -> str:
        return "PARKED" if self._parked else "RUN"

    def get_register_map(self) -> Dict[str, int]:
        return {"PC": self._state.pc, "SP": self._state.sp}

    def get_register_layout(self) -> List[RegisterLayoutInfo]:
        return [RegisterLayoutInfo("Test Group", [RegisterInfo("PC", 16), RegisterInfo("SP", 8)])]

    def get_flag_state(self) -> Dict[str, bool]:
        return {}

    def disassemble(self, start_addr: int, length: int) -> List[Tuple[int, str, str]]:
        return [(start_addr + i, "00", "NOP") for i in range(length)]

@pytest.fixture
def bus():
    bus = MemoryBus()
    bus.register_device(0x0000, 0x00FF, RAM(0x100))
    return bus

@pytest.fixture
def cpu(bus):
    return CounterCpu(bus)

class TestCpuState:
    def test_cpu_state_init_default(self):
        state = CpuState()
        assert state.pc == 0x0000
        assert state.sp == 0x0000

    # @intent:test_case_immutability 状態は不変で、replace は新しいインスタンスを返すことを検証します。
    def test_cpu_state_replace(self):
        state = CpuState(pc=0x100)
        new_state = state.replace(pc=0x200)
        assert state.pc == 0x100
        assert new_state.pc == 0x200
        with pytest.raises(AttributeError):
            state.pc = 0x300

class TestAbstractCpu:
    # @intent:test_case_tick tick はカウンタを進め、そのティックのバスアクセスを含むSnapshotを返すことを検証します。
    def test_tick_returns_snapshot(self, cpu, bus):
        bus.load(0x0000, 0xA9)
        snapshot = cpu.tick()

        assert snapshot.metadata.tick_count == 1
        assert snapshot.metadata.instruction_count == 1
        assert snapshot.metadata.state_name == "RUN"
        assert snapshot.state.pc == 0x0001
        assert len(snapshot.bus_activity) == 1
        assert snapshot.bus_activity[0].access_type == BusAccessType.READ
        assert snapshot.bus_activity[0].data == 0xA9

    # @intent:test_case_log_isolation 前ティック以前のアクセスはSnapshotに含まれないことを検証します。
    def test_tick_clears_stale_activity(self, cpu, bus):
        bus.read(0x0010)
        snapshot = cpu.tick()
        assert [a.address for a in snapshot.bus_activity] == [0x0000]

    def test_run_returns_one_snapshot_per_tick(self, cpu):
        snapshots = cpu.run(5)
        assert [s.metadata.tick_count for s in snapshots] == [1, 2, 3, 4, 5]
        assert cpu.tick_count == 5
        assert cpu.instruction_count == 2

    # @intent:test_case_step step_instruction は次の命令境界まで進むことを検証します。
    def test_step_instruction(self, cpu):
        snapshots = cpu.step_instruction()
        assert len(snapshots) == 3
        assert cpu.get_state().pc == 3
        assert cpu.is_at_instruction_boundary()

    # @intent:test_case_step_parked 停止状態に入った場合はそこで戻ることを検証します。
    def test_step_instruction_stops_when_parked(self, cpu, bus):
        bus.load(0x0001, 0xFF)
        snapshots = cpu.step_instruction()
        assert len(snapshots) == 2
        assert cpu.is_parked()

    def test_step_instruction_max_ticks(self, cpu):
        snapshots = cpu.step_instruction(max_ticks=2)
        assert len(snapshots) == 2

    def test_reset_clears_counters(self, cpu):
        cpu.run(4)
        cpu.reset()
        assert cpu.tick_count == 0
        assert cpu.instruction_count == 0
        assert cpu.get_state().pc == 0x0000

    # @intent:test_case_symbols シンボルマップの設定と取得を検証します。
    def test_symbol_map(self, cpu):
        cpu.set_symbol_map({"start": 0x0000, "loop": 0x0010})
        assert cpu.get_symbol_map() == {"start": 0x0000, "loop": 0x0010}

    def test_reset_and_halt_lines_are_levels(self, cpu):
        cpu.set_reset(1)
        cpu.set_halt(True)
        assert cpu._reset_line is True
        assert cpu._halt_line is True
