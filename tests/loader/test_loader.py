# tests/loader/test_loader.py
"""
retro_cycle_tracer.loader.loaderモジュールの単体テスト。
生バイナリ、Intel HEX、アセンブリソースのロードと、拡張子によるローダー選択を検証します。
"""
import pytest

from retro_cycle_tracer.transport.bus import MemoryBus, RAM, ROM
from retro_cycle_tracer.loader.loader import BinaryLoader, IntelHexLoader, AssemblyLoader, load_image

# @intent:test_suite コードローダー機能の検証。

@pytest.fixture
def bus():
    bus = MemoryBus()
    bus.register_device(0x0000, 0x0FFF, RAM(0x1000))
    bus.register_device(0xC000, 0xFFFF, ROM(0x4000))
    return bus

class TestBinaryLoader:
    """
    BinaryLoaderの単体テスト。
    """
    def test_load_into_rom(self, bus, tmp_path):
        image = tmp_path / "rom.bin"
        image.write_bytes(bytes([0xA9, 0x01, 0x00, 0xEA]))

        loaded = BinaryLoader().load_binary(image, bus, 0xC000)

        assert loaded == 4
        assert [bus.peek(0xC000 + i) for i in range(4)] == [0xA9, 0x01, 0x00, 0xEA]
        # バックドア経由のためログは残らない
        assert bus.get_and_clear_activity_log() == []

    def test_image_beyond_address_space(self, bus):
        with pytest.raises(ValueError, match="exceeds the 16-bit address space"):
            BinaryLoader().load_bytes(bytes(4), bus, 0xFFFE)

    def test_unmapped_region(self, bus):
        with pytest.raises(IndexError, match="not mapped"):
            BinaryLoader().load_bytes(bytes(2), bus, 0x1000)

    def test_empty_image(self, bus):
        assert BinaryLoader().load_bytes(b"", bus, 0x0000) == 0

class TestIntelHexLoader:
    """
    IntelHexLoaderの単体テスト。
    """
    @pytest.fixture
    def setup_loader(self, bus, tmp_path):
        return IntelHexLoader(), bus, tmp_path

    def test_load_simple_hex_data(self, setup_loader):
        loader, bus, tmp_path = setup_loader
        hex_content = """
        :020000001234B8
        :02000200ABCD84
        :00000001FF
        """
        hex_file = tmp_path / "simple.hex"
        hex_file.write_text(hex_content)

        assert loader.load_intel_hex(str(hex_file), bus) == 4

        assert [bus.peek(i) for i in range(4)] == [0x12, 0x34, 0xAB, 0xCD]

    def test_segment_and_linear_address_records(self, setup_loader):
        loader, bus, _ = setup_loader
        lines = [
            ":020000040000FA",   # ELA 0x0000
            ":020000020100FB",   # ESA 0x0100 -> 0x1000
            ":020010001234A8",
            ":00000001FF",
        ]
        # 0x1010 はマップされていないため、RAMを拡張して検証する
        bus.register_device(0x1000, 0x1FFF, RAM(0x1000))
        loader.load_lines(lines, bus)
        assert bus.peek(0x1010) == 0x12
        assert bus.peek(0x1011) == 0x34

    def test_extended_address_outside_bus(self, setup_loader):
        loader, bus, _ = setup_loader
        with pytest.raises(IndexError, match="not mapped"):
            loader.load_lines([":020000040001F9", ":021000001234A8"], bus)

    def test_start_address_record_is_ignored(self, setup_loader):
        loader, bus, _ = setup_loader
        assert loader.load_lines([":0400000300000000F9", ":01000000EA15", ":00000001FF"], bus) == 1
        assert bus.peek(0x0000) == 0xEA

    def test_records_after_eof_are_ignored(self, setup_loader):
        loader, bus, _ = setup_loader
        loader.load_lines([":00000001FF", ":01000000EA15"], bus)
        assert bus.peek(0x0000) == 0x00

    def test_load_multiple_records(self, setup_loader):
        loader, bus, tmp_path = setup_loader
        hex_content = """
        :03000000AABBCCCC
        :02000300DDEE30
        :00000001FF
        """
        hex_file = tmp_path / "multiple.hex"
        hex_file.write_text(hex_content)

        loader.load_intel_hex(str(hex_file), bus)

        assert [bus.peek(i) for i in range(5)] == [0xAA, 0xBB, 0xCC, 0xDD, 0xEE]

    def test_load_invalid_checksum(self, setup_loader):
        loader, bus, tmp_path = setup_loader
        hex_content = """
        :020000001234B9 ; Checksum should be B8, but it's B9
        :00000001FF
        """
        hex_file = tmp_path / "invalid_checksum.hex"
        hex_file.write_text(hex_content)

        with pytest.raises(ValueError, match="Checksum mismatch on line 2: Calculated B8, Expected B9"):
            loader.load_intel_hex(str(hex_file), bus)

    def test_load_unknown_record_type(self, setup_loader):
        loader, bus, tmp_path = setup_loader
        hex_content = """
        :020000061234B2 ; Record type 0x06 is unknown
        :00000001FF
        """
        hex_file = tmp_path / "unknown_record.hex"
        hex_file.write_text(hex_content)

        with pytest.raises(ValueError, match="Unknown Intel HEX record type 06 on line 2"):
            loader.load_intel_hex(str(hex_file), bus)

    def test_record_too_short(self, setup_loader):
        loader, bus, _ = setup_loader
        with pytest.raises(ValueError, match="Too short"):
            loader.load_lines([":0000"], bus)

    def test_data_length_mismatch(self, setup_loader):
        loader, bus, _ = setup_loader
        with pytest.raises(ValueError, match="Data length mismatch on line 1"):
            loader.load_lines([":03000000AABBCC"], bus)

    def test_load_empty_hex_file(self, setup_loader):
        loader, bus, tmp_path = setup_loader
        hex_file = tmp_path / "empty.hex"
        hex_file.write_text("")

        assert loader.load_intel_hex(str(hex_file), bus) == 0
        assert bus.peek(0x0000) == 0x00

class TestAssemblyLoader:
    """
    AssemblyLoaderの単体テスト。
    """
    def test_load_assembly_basic(self, bus, tmp_path):
        asm_content = """
        ORG $0100
        start:
            NOP
            DB $12, $34
        loop:
            LDA #$FF
            JMP loop
        """
        asm_file = tmp_path / "test.asm"
        asm_file.write_text(asm_content)

        symbol_map = AssemblyLoader().load_assembly(str(asm_file), bus)

        assert symbol_map == {"start": 0x100, "loop": 0x103}
        assert [bus.peek(0x100 + i) for i in range(8)] == [0xEA, 0x12, 0x34, 0xA9, 0xFF, 0x4C, 0x03, 0x01]

    def test_unsupported_architecture(self, bus):
        with pytest.raises(ValueError, match="Unsupported architecture"):
            AssemblyLoader().load_source(["NOP"], bus, architecture="Z80")

class TestLoadImage:
    """
    拡張子によるローダー選択の検証。
    """
    def test_binary_uses_base_address(self, bus, tmp_path):
        image = tmp_path / "boot.rom"
        image.write_bytes(b"\xEA\x60")
        assert load_image(image, bus, 0xC000) == {}
        assert bus.peek(0xC001) == 0x60

    def test_intel_hex_ignores_base_address(self, bus, tmp_path):
        image = tmp_path / "boot.hex"
        image.write_text(":01000000EA15\n:00000001FF\n")
        load_image(image, bus, 0xC000)
        assert bus.peek(0x0000) == 0xEA
        assert bus.peek(0xC000) == 0x00

    def test_assembly_returns_symbols(self, bus, tmp_path):
        image = tmp_path / "boot.s"
        image.write_text("ORG $C000\nreset: JMP reset\n")
        assert load_image(image, bus) == {"reset": 0xC000}
        assert [bus.peek(0xC000 + i) for i in range(3)] == [0x4C, 0x00, 0xC0]
