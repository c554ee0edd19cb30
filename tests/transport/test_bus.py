# tests/transport/test_bus.py
"""
retro_cycle_tracer.transport.busモジュールの単体テスト。
"""
import pytest
from retro_cycle_tracer.transport.bus import MemoryBus, Device, RAM, ROM, BusRequest, BusAccessType

# @intent:test_suite メモリバスとデバイスの基本的な機能、クロック経路、エラーハンドリングを検証します。

class TestRAM:
    """
    RAMデバイスの単体テスト。
    """
    # @intent:test_case_init RAMクラスが正しいサイズで初期化されることを検証します。
    def test_ram_init_valid_size(self):
        ram = RAM(16)
        assert ram.get_size() == 16
        assert all(ram.read(i) == 0 for i in range(16))

    # @intent:test_case_init 無効なサイズでRAMを初期化するとValueErrorが発生することを検証します。
    def test_ram_init_invalid_size(self):
        with pytest.raises(ValueError, match="RAM size must be a positive integer."):
            RAM(0)
        with pytest.raises(ValueError, match="RAM size must be a positive integer."):
            RAM(-1)
        with pytest.raises(ValueError, match="RAM size must be a positive integer."):
            RAM(1.5)

    # @intent:test_case_oob 境界外アドレスへのアクセス時にIndexErrorが発生することを検証します。
    def test_ram_read_write_out_of_bounds(self):
        ram = RAM(4)
        with pytest.raises(IndexError, match="Address 4 out of bounds for RAM of size 4."):
            ram.read(4)
        with pytest.raises(IndexError, match="Address -1 out of bounds for RAM of size 4."):
            ram.write(-1, 0x00)

    # @intent:test_case_data 8bitを超過するデータの書き込みでValueErrorが発生することを検証します。
    def test_ram_write_invalid_data(self):
        ram = RAM(1)
        with pytest.raises(ValueError, match="Data 256 is not an 8-bit value."):
            ram.write(0, 0x100)

class TestMemoryBus:
    """
    MemoryBusの単体テスト。
    """
    @pytest.fixture
    def bus(self):
        bus = MemoryBus()
        bus.register_device(0x0000, 0x0FFF, RAM(0x1000))
        bus.register_device(0xC000, 0xFFFF, ROM(0x4000))
        return bus

    # @intent:test_case_register 複数デバイスへのオフセット計算が正しいことを検証します。
    def test_register_and_access_devices(self):
        bus = MemoryBus()
        ram1 = RAM(16)
        ram2 = RAM(16)
        bus.register_device(0x0000, 0x000F, ram1)
        bus.register_device(0x0010, 0x001F, ram2)

        bus.write(0x001A, 0xBB)
        assert bus.read(0x001A) == 0xBB
        assert ram2.read(0x0A) == 0xBB

    # @intent:test_case_unmapped 直接アクセスではマップされていないアドレスでIndexErrorが発生することを検証します。
    def test_direct_access_unmapped_address(self, bus):
        with pytest.raises(IndexError, match="Address 0x2000 not mapped to any device."):
            bus.read(0x2000)
        with pytest.raises(IndexError, match="Address 0x2000 not mapped to any device."):
            bus.write(0x2000, 0xCC)

    # @intent:test_case_invalid_range 16bitアドレス空間外の登録はValueErrorとなることを検証します。
    def test_register_invalid_address_range(self):
        bus = MemoryBus()
        with pytest.raises(ValueError, match="Invalid address range"):
            bus.register_device(0x0010, 0x000F, RAM(16))
        with pytest.raises(ValueError, match="Invalid address range"):
            bus.register_device(0xFFFF, 0x10000, RAM(2))

    # @intent:test_case_mismatch_size デバイスサイズが登録範囲と一致しない場合にValueErrorが発生することを検証します。
    def test_register_size_mismatch(self):
        bus = MemoryBus()
        with pytest.raises(ValueError, match=r"Registered RAM device size \(10 bytes\)"):
            bus.register_device(0x0000, 0x000F, RAM(10))

    # @intent:test_case_invalid_device Deviceを継承していないオブジェクトはTypeErrorとなることを検証します。
    def test_register_invalid_device_type(self):
        bus = MemoryBus()
        class NotADevice: pass
        with pytest.raises(TypeError):
            bus.register_device(0x0000, 0x000F, NotADevice())

    # @intent:test_case_clock_read 読み出しリクエストの結果は data_out として次のティックで見えることを検証します。
    def test_clock_read_updates_data_out(self, bus):
        bus.load(0x0010, 0x5A)
        assert bus.data_out == 0x00
        bus.clock(BusRequest(address=0x0010))
        assert bus.data_out == 0x5A

        log = bus.get_and_clear_activity_log()
        assert len(log) == 1
        assert log[0].access_type == BusAccessType.READ
        assert log[0].address == 0x0010
        assert log[0].data == 0x5A

    # @intent:test_case_clock_write 書き込みリクエストはデバイスへ反映され、data_out は変化しないことを検証します。
    def test_clock_write_keeps_data_out(self, bus):
        bus.load(0x0020, 0x11)
        bus.clock(BusRequest(address=0x0020))
        bus.clock(BusRequest(address=0x0030, data_in=0x99, write_enable=True))

        assert bus.data_out == 0x11
        assert bus.peek(0x0030) == 0x99
        writes = [a for a in bus.get_and_clear_activity_log() if a.access_type == BusAccessType.WRITE]
        assert [(a.address, a.data) for a in writes] == [(0x0030, 0x99)]

    # @intent:test_case_clock_unmapped クロック経路ではマップ外の読み出しは0、書き込みは無視されることを検証します。
    def test_clock_unmapped_is_silent(self, bus):
        bus.load(0x0000, 0x77)
        bus.clock(BusRequest(address=0x0000))
        bus.clock(BusRequest(address=0x4000))
        assert bus.data_out == 0x00
        bus.clock(BusRequest(address=0x4000, data_in=0x12, write_enable=True))
        assert not bus.is_mapped(0x4000)

    # @intent:test_case_rom_clock_write クロック経路でのROMへの書き込みは無視されることを検証します。
    def test_clock_write_to_rom_ignored(self, bus):
        bus.load(0xC000, 0xEA)
        bus.clock(BusRequest(address=0xC000, data_in=0x00, write_enable=True))
        assert bus.peek(0xC000) == 0xEA

    # @intent:test_case_peek peek はアクティビティログを記録しないことを検証します。
    def test_peek_does_not_log(self, bus):
        bus.load(0x0100, 0x42)
        assert bus.peek(0x0100) == 0x42
        assert bus.get_and_clear_activity_log() == []

    # @intent:test_case_load load はROMにも書き込め、ログを記録しないことを検証します。
    def test_load_writes_through_to_rom(self, bus):
        bus.load(0xFFFF, 0x12)
        assert bus.read(0xFFFF) == 0x12
        assert len(bus.get_and_clear_activity_log()) == 1

    # @intent:test_case_log_clear 取得したログはクリアされることを検証します。
    def test_activity_log_cleared(self, bus):
        bus.read(0x0000)
        assert len(bus.get_and_clear_activity_log()) == 1
        assert bus.get_and_clear_activity_log() == []
