# tests/debugger/test_debugger.py
"""
retro_cycle_tracer.debugger.debuggerモジュールの単体テスト。
Debuggerの実行制御、ブレークポイント管理、および条件チェック機能を検証します。
"""
import logging
from unittest.mock import patch

import pytest

from retro_cycle_tracer.transport.bus import MemoryBus, RAM, ROM, BusAccess, BusAccessType
from retro_cycle_tracer.arch.mos6502.cpu import Mos6502Cpu
from retro_cycle_tracer.arch.mos6502.state import Mos6502CpuState
from retro_cycle_tracer.core.snapshot import Snapshot, Metadata
from retro_cycle_tracer.debugger.debugger import Debugger, BreakpointCondition, BreakpointConditionType

# @intent:test_suite デバッガのブレークポイントと実行制御機能の検証。

class TestDebugger:
    """
    Debuggerの単体テスト。
    """
    @pytest.fixture
    def setup_debugger(self):
        bus = MemoryBus()
        bus.register_device(0x0000, 0x0FFF, RAM(0x1000))
        bus.register_device(0xC000, 0xFFFF, ROM(0x4000))
        cpu = Mos6502Cpu(bus)
        debugger = Debugger(cpu)
        return debugger, cpu, bus

    @staticmethod
    def load(bus, program, address=0xC000):
        for offset, byte in enumerate(program):
            bus.load(address + offset, byte)

    # @intent:test_case_add_remove_breakpoint ブレークポイントの追加と削除が正しく行われることを検証します。
    def test_add_remove_breakpoint(self, setup_debugger):
        debugger, _, _ = setup_debugger
        bp1 = BreakpointCondition(BreakpointConditionType.PC_MATCH, value=0x1000)
        bp2 = BreakpointCondition(BreakpointConditionType.MEMORY_WRITE, address=0x2000)

        debugger.add_breakpoint(bp1)
        debugger.add_breakpoint(bp2)
        assert debugger.get_breakpoints() == [bp1, bp2]

        debugger.add_breakpoint(bp1) # 重複追加は無視される
        assert len(debugger.get_breakpoints()) == 2

        debugger.remove_breakpoint(bp1)
        assert debugger.get_breakpoints() == [bp2]

        debugger.remove_breakpoint(bp1) # 存在しないブレークポイントの削除はエラーにならない
        assert len(debugger.get_breakpoints()) == 1

    def test_update_breakpoint(self, setup_debugger):
        debugger, _, _ = setup_debugger
        bp = BreakpointCondition(BreakpointConditionType.PC_MATCH, value=0xC000)
        disabled = BreakpointCondition(BreakpointConditionType.PC_MATCH, value=0xC000, enabled=False)
        debugger.add_breakpoint(bp)
        debugger.update_breakpoint(bp, disabled)
        assert debugger.get_breakpoints() == [disabled]

    def test_invalid_history_limit(self, setup_debugger):
        _, cpu, _ = setup_debugger
        with pytest.raises(ValueError, match="history_limit"):
            Debugger(cpu, history_limit=0)

    # @intent:test_case_history 履歴は直近 history_limit ティック分だけ保持されることを検証します。
    def test_history_is_bounded(self, setup_debugger):
        _, cpu, _ = setup_debugger
        debugger = Debugger(cpu, history_limit=3)
        for _ in range(5):
            debugger.tick()
        assert [s.metadata.tick_count for s in debugger.get_history()] == [3, 4, 5]
        assert debugger.get_last_snapshot().metadata.tick_count == 5

        debugger.clear_history()
        assert debugger.get_history() == []

    # @intent:test_case_step_instruction step_instructionが命令境界までの全ティックを記録することを検証します。
    def test_step_instruction(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        self.load(bus, [0xA9, 0x12])
        boot = debugger.step_instruction()
        snapshots = debugger.step_instruction()

        assert len(boot) == 5
        assert len(snapshots) == 7
        assert cpu.get_state().a == 0x12
        assert len(debugger.get_history()) == 12
        assert debugger.get_last_snapshot() is snapshots[-1]

    # @intent:test_case_pc_match_breakpoint PC_MATCHブレークポイントが命令境界でヒットすることを検証します。
    def test_pc_match_breakpoint(self, setup_debugger, caplog):
        debugger, cpu, bus = setup_debugger
        self.load(bus, [0xEA, 0xEA, 0xEA, 0xEA])
        bp = BreakpointCondition(BreakpointConditionType.PC_MATCH, value=0xC003)
        debugger.add_breakpoint(bp)

        with caplog.at_level(logging.INFO, logger="retro_cycle_tracer.debugger.debugger"):
            hit = debugger.run()

        assert hit == bp
        assert debugger.last_hit == bp
        assert cpu.get_state().pc == 0xC003
        assert cpu.is_at_instruction_boundary()
        assert "Breakpoint PC_MATCH hit" in caplog.text

        # 再開時は少なくとも1ティック進むため、同じ位置で止まり続けない
        assert debugger.run(max_ticks=20) is None
        assert cpu.get_state().pc != 0xC003

    def test_disabled_breakpoint_is_ignored(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        self.load(bus, [0xEA, 0xEA])
        debugger.add_breakpoint(BreakpointCondition(BreakpointConditionType.PC_MATCH, value=0xC001, enabled=False))
        assert debugger.run(max_ticks=20) is None
        assert cpu.tick_count == 20

    # @intent:test_case_memory_write_breakpoint MEMORY_WRITEブレークポイントが書き込みティックでヒットすることを検証します。
    def test_memory_write_breakpoint(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        self.load(bus, [0xA9, 0x42, 0x8D, 0x00, 0x02])
        debugger.add_breakpoint(BreakpointCondition(BreakpointConditionType.MEMORY_WRITE, address=0x0200))

        assert debugger.run() is not None
        writes = debugger.get_last_snapshot().writes()
        assert [(w.address, w.data) for w in writes] == [(0x0200, 0x42)]

    # @intent:test_case_memory_read_breakpoint MEMORY_READブレークポイントが読み出しティックでヒットすることを検証します。
    def test_memory_read_breakpoint(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        bus.load(0x0300, 0xDE)
        self.load(bus, [0xAD, 0x00, 0x03])
        debugger.add_breakpoint(BreakpointCondition(BreakpointConditionType.MEMORY_READ, address=0x0300))

        assert debugger.run() is not None
        access = debugger.get_last_snapshot().bus_activity[0]
        assert access == BusAccess(0x0300, 0xDE, BusAccessType.READ)
        # レジスタへの反映はまだ
        assert cpu.get_state().a == 0x00

    # @intent:test_case_register_value_breakpoint REGISTER_VALUEブレークポイントがヒットすることを検証します。
    def test_register_value_breakpoint(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        self.load(bus, [0xA9, 0x55, 0xEA])
        debugger.add_breakpoint(BreakpointCondition(BreakpointConditionType.REGISTER_VALUE, register_name="a", value=0x55))

        assert debugger.run() is not None
        assert cpu.get_state().a == 0x55
        assert debugger.get_last_snapshot().metadata.state_name == "FETCH_OPCODE_REQUEST"

    def test_register_change_uses_display_names(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        # LDX #$20; TXS
        self.load(bus, [0xA2, 0x20, 0x9A])
        debugger.add_breakpoint(BreakpointCondition(BreakpointConditionType.REGISTER_CHANGE, register_name="S"))

        assert debugger.run() is not None
        assert cpu.get_state().sp == 0x20
        assert cpu.get_state().x == 0x20

    def test_unknown_register_never_hits(self, setup_debugger):
        debugger, _, bus = setup_debugger
        self.load(bus, [0xA9, 0x01])
        debugger.add_breakpoint(BreakpointCondition(BreakpointConditionType.REGISTER_CHANGE, register_name="hl"))
        assert debugger.run(max_ticks=30) is None

    def test_state_enter_breakpoint(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        self.load(bus, [0xEA])
        debugger.add_breakpoint(BreakpointCondition(BreakpointConditionType.STATE_ENTER, state_name="EXECUTE"))

        assert debugger.run() is not None
        assert debugger.get_last_snapshot().metadata.state_name == "EXECUTE"
        assert cpu.tick_count == 8

    # @intent:test_case_run_parked 停止状態（エラートラップ、HALT）に入ると run() が戻ることを検証します。
    def test_run_returns_when_trapped(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        self.load(bus, [0xFF])
        assert debugger.run() is None
        assert cpu.trapped
        assert cpu.tick_count == 8

    def test_run_returns_when_halted(self, setup_debugger):
        debugger, cpu, bus = setup_debugger
        self.load(bus, [0xEA])
        cpu.set_halt(True)
        assert debugger.run() is None
        assert cpu.halted

    # @intent:test_case_run_until_stop run()メソッドがstop()で停止することを検証します。
    def test_run_until_stop(self, setup_debugger):
        debugger, cpu, _ = setup_debugger
        original_tick = cpu.tick

        def tick_then_stop():
            snapshot = original_tick()
            debugger.stop()
            return snapshot

        with patch.object(cpu, "tick", side_effect=tick_then_stop):
            assert debugger.run(max_ticks=100) is None
        assert cpu.tick_count == 1

    def test_check_breakpoints_on_snapshot(self, setup_debugger):
        debugger, _, _ = setup_debugger
        bp = BreakpointCondition(BreakpointConditionType.MEMORY_READ, address=0x0010)
        debugger.add_breakpoint(bp)
        snapshot = Snapshot(
            state=Mos6502CpuState(),
            metadata=Metadata(tick_count=1, state_name="READ_OPERAND_CAPTURE"),
            bus_activity=[BusAccess(0x0010, 0x01, BusAccessType.READ)],
        )
        assert debugger.check_breakpoints(snapshot) == bp
        empty = Snapshot(state=Mos6502CpuState(), metadata=Metadata(tick_count=2))
        assert debugger.check_breakpoints(empty) is None
