# retro_cycle_tracer/loader/loader.py
"""
プログラムイメージのローダー。
生バイナリ、Intel HEX、アセンブリソースのロードをサポートします。

イメージはすべて `MemoryBus.load()`（デバイスのバックドア）経由で配置されます。
クロック経路を通らないため、ROMにも書き込め、バスアクティビティログも汚しません。
"""
import logging
from pathlib import Path
from typing import NamedTuple, Union

from retro_cycle_tracer.transport.bus import MemoryBus
from retro_cycle_tracer.common.types import SymbolMap

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

class BinaryLoader:
    """
    生バイナリイメージを指定アドレスから連続して配置するローダー。
    """
    def load_binary(self, file_path: PathLike, bus: MemoryBus, base_address: int) -> int:
        data = Path(file_path).read_bytes()
        return self.load_bytes(data, bus, base_address)

    # @intent:responsibility バイト列をバスへ配置し、配置したバイト数を返します。
    # @intent:pre-condition イメージ全体がマップ済みのアドレス空間に収まっている必要があります。
    def load_bytes(self, data: bytes, bus: MemoryBus, base_address: int) -> int:
        end_address = base_address + len(data) - 1
        if data and not (0 <= base_address and end_address <= 0xFFFF):
            raise ValueError(
                f"Image of {len(data)} bytes at ${base_address:04X} exceeds the 16-bit address space."
            )
        for offset, value in enumerate(data):
            bus.load(base_address + offset, value)
        logger.debug("Loaded %d bytes at $%04X", len(data), base_address)
        return len(data)

# @intent:data_structure 検証済みのIntel HEXレコード1行分。
class HexRecord(NamedTuple):
    record_type: int
    address: int
    data: bytes

# @intent:responsibility ':' で始まる1行をデコードし、長さとチェックサムを検証します。
def parse_hex_record(line: str, line_num: int) -> HexRecord:
    if len(line) < 11:
        raise ValueError(f"Invalid Intel HEX record format on line {line_num}: Too short - {line}")
    try:
        raw = bytes.fromhex(line[1:])
    except ValueError as e:
        raise ValueError(f"Error parsing Intel HEX line {line_num}: {line} - {e}") from e

    # 長さ(1) + アドレス(2) + 種別(1) + データ + チェックサム(1)
    if len(raw) != raw[0] + 5:
        raise ValueError(f"Data length mismatch on line {line_num}")
    expected = raw[-1]
    calculated = -sum(raw[:-1]) & 0xFF
    if calculated != expected:
        raise ValueError(
            f"Checksum mismatch on line {line_num}: Calculated {calculated:02X}, Expected {expected:02X}"
        )
    return HexRecord(record_type=raw[3], address=(raw[1] << 8) | raw[2], data=raw[4:-1])

class IntelHexLoader:
    """
    データ(00)、EOF(01)、拡張セグメント(02)、拡張リニア(04)レコードを解釈します。
    開始アドレスレコード(03, 05)は読み飛ばします。エンジンはブートベクタから起動するためです。
    """
    def load_intel_hex(self, file_path: PathLike, bus: MemoryBus) -> int:
        with open(file_path, "r", encoding="ascii") as f:
            return self.load_lines(f, bus)

    # @intent:responsibility レコード行を順に解釈し、ロードしたデータバイト数を返します。
    def load_lines(self, lines, bus: MemoryBus) -> int:
        base = 0x0000
        loaded = 0

        for line_num, line in enumerate(lines, 1):
            line = line.split(";", 1)[0].strip()
            if not line.startswith(":"):
                continue
            record = parse_hex_record(line, line_num)

            if record.record_type == 0x00:
                for i, value in enumerate(record.data):
                    bus.load(base + record.address + i, value)
                loaded += len(record.data)
            elif record.record_type == 0x01:
                break
            elif record.record_type in (0x02, 0x04):
                shift = 4 if record.record_type == 0x02 else 16
                base = int.from_bytes(record.data, "big") << shift
            elif record.record_type not in (0x03, 0x05):
                raise ValueError(f"Unknown Intel HEX record type {record.record_type:02X} on line {line_num}")

        logger.debug("Loaded %d bytes from Intel HEX", loaded)
        return loaded

# @intent:responsibility ソースをアセンブルしてバスに配置し、ラベルのシンボルマップを返します。
class AssemblyLoader:
    def load_assembly(self, file_path: PathLike, bus: MemoryBus, architecture: str = "MOS6502") -> SymbolMap:
        source = Path(file_path).read_text(encoding="utf-8")
        return self.load_source(source.splitlines(), bus, architecture)

    def load_source(self, lines, bus: MemoryBus, architecture: str = "MOS6502") -> SymbolMap:
        if architecture.upper() != "MOS6502":
            raise ValueError(f"Unsupported architecture for assembly loading: {architecture}")

        from retro_cycle_tracer.arch.mos6502.assembler import Mos6502Assembler
        symbol_map, placed = Mos6502Assembler().assemble(list(lines))
        for item in placed:
            bus.load(item.address, item.value)
        logger.debug("Assembled %d bytes, %d symbols", len(placed), len(symbol_map))
        return symbol_map

# @intent:responsibility 拡張子でローダーを選び、イメージをバスに配置します。
def load_image(file_path: PathLike, bus: MemoryBus, base_address: int = 0x0000) -> SymbolMap:
    """
    `.hex`/`.ihx` は Intel HEX（アドレスはファイル内の指定に従う）、
    `.asm`/`.s` はアセンブリソース、それ以外は `base_address` から配置する生バイナリとして扱います。
    アセンブリソースの場合のみシンボルマップを返し、それ以外は空の辞書を返します。
    """
    suffix = Path(file_path).suffix.lower()
    if suffix in (".hex", ".ihx"):
        IntelHexLoader().load_intel_hex(file_path, bus)
        return {}
    if suffix in (".asm", ".s"):
        return AssemblyLoader().load_assembly(file_path, bus)
    BinaryLoader().load_binary(file_path, bus, base_address)
    return {}
