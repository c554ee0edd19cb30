# src/retro_cycle_tracer/arch/mos6502/assembler.py
"""
MOS 6502 簡易アセンブラ。

命令テーブル（OPCODE_MAP）から (ニーモニック, モード) -> オペコード の逆引きを構築し、
2パスでラベルを解決します。対応する疑似命令は ORG と DB のみです。
"""
from typing import List, Tuple, Dict, Optional
from retro_cycle_tracer.common.types import AssembledByte, AssembledBytes, SymbolMap
from retro_cycle_tracer.loader.assembler import BaseAssembler
from retro_cycle_tracer.arch.mos6502.decoder import OPCODE_MAP, OPERAND_LENGTH, BRANCH_OPS, Mode

# オペランド表記の種類。ゼロページ/アブソリュートの選択は値が決まってから行う。
_DIRECT = "DIRECT"
_INDEXED_X = "INDEXED_X"
_INDEXED_Y = "INDEXED_Y"

_NARROW_WIDE = {
    _DIRECT: (Mode.ZERO_PAGE, Mode.ABSOLUTE),
    _INDEXED_X: (Mode.ZERO_PAGE_X, Mode.ABSOLUTE_X),
    _INDEXED_Y: (Mode.ZERO_PAGE_Y, Mode.ABSOLUTE_Y),
}

class Mos6502Assembler(BaseAssembler):
    """
    MOS 6502 用の簡易アセンブラ。
    前方参照のシンボルはパス1でアブソリュート形式として長さを確定し、パス2でもその形式を維持します。
    """
    def __init__(self):
        super().__init__()
        self._opcodes: Dict[Tuple[str, Mode], int] = {
            (entry.mnemonic, entry.mode): opcode for opcode, entry in OPCODE_MAP.items()
        }
        self._mnemonics = {entry.mnemonic for entry in OPCODE_MAP.values()}

    # @intent:responsibility オペランド表記を (表記の種類, 値の式) に分解する。
    def _classify_operand(self, mnemonic: str, operand_str: str) -> Tuple[object, Optional[str]]:
        text = operand_str.strip()
        upper = text.upper()

        if not text:
            if (mnemonic, Mode.IMPLIED) in self._opcodes:
                return Mode.IMPLIED, None
            return Mode.ACCUMULATOR, None
        if upper == "A":
            return Mode.ACCUMULATOR, None
        if mnemonic in BRANCH_OPS:
            return Mode.RELATIVE, text
        if text.startswith('#'):
            return Mode.IMMEDIATE, text[1:]
        if upper.startswith('(') and upper.endswith(',X)'):
            return Mode.INDIRECT_X, text[1:-3]
        if upper.startswith('(') and upper.endswith('),Y'):
            return Mode.INDIRECT_Y, text[1:-3]
        if text.startswith('(') and text.endswith(')'):
            return Mode.INDIRECT, text[1:-1]
        if upper.endswith(',X'):
            return _INDEXED_X, text[:-2]
        if upper.endswith(',Y'):
            return _INDEXED_Y, text[:-2]
        return _DIRECT, text

    def _resolve(self, expr: str, symbols: SymbolMap, strict: bool) -> Optional[int]:
        try:
            return self._parse_val(expr, symbols)
        except ValueError:
            if strict:
                raise
            return None

    # @intent:responsibility 表記と値からアドレッシングモードを決める。wide=True はアブソリュート形式を強制する。
    def _select_mode(self, mnemonic: str, kind: object, value: Optional[int], wide: bool) -> Mode:
        if isinstance(kind, Mode):
            mode = kind
        else:
            narrow, absolute = _NARROW_WIDE[kind]
            fits = value is not None and 0 <= value <= 0xFF and not wide
            if fits and (mnemonic, narrow) in self._opcodes:
                mode = narrow
            else:
                mode = absolute
        if (mnemonic, mode) not in self._opcodes:
            raise ValueError(f"No matching opcode for {mnemonic} with mode {mode.value}")
        return mode

    # @intent:responsibility 1命令をバイト列にする。strict=False のパスでは未定義シンボルを許容する。
    def _assemble_line(self, mnemonic: str, operand_str: str, current_pc: int,
                       symbols: SymbolMap, strict: bool = True, wide: bool = False) -> Tuple[List[int], bool]:
        if mnemonic not in self._mnemonics:
            raise ValueError(f"Unknown mnemonic: {mnemonic}")

        kind, expr = self._classify_operand(mnemonic, operand_str)
        value = self._resolve(expr, symbols, strict) if expr is not None else 0
        if value is None:
            wide = True
        mode = self._select_mode(mnemonic, kind, value, wide)
        opcode = self._opcodes[(mnemonic, mode)]
        value = value or 0

        if mode == Mode.RELATIVE:
            offset = value - (current_pc + 2)
            if not -128 <= offset <= 127:
                if strict:
                    raise ValueError(f"Branch target out of range: {offset}")
                offset = 0
            return [opcode, offset & 0xFF], wide

        length = OPERAND_LENGTH[mode]
        if length == 0:
            return [opcode], wide
        if length == 1:
            return [opcode, value & 0xFF], wide
        return [opcode, value & 0xFF, (value >> 8) & 0xFF], wide

    def _data_bytes(self, operands: str, symbols: SymbolMap, strict: bool) -> List[int]:
        values = []
        for item in operands.split(','):
            item = item.strip()
            if not item:
                continue
            if len(item) >= 2 and item[0] == item[-1] and item[0] in "\"'":
                values.extend(ord(ch) & 0xFF for ch in item[1:-1])
                continue
            value = self._resolve(item, symbols, strict)
            values.append((value or 0) & 0xFF)
        return values

    def assemble(self, lines: List[str]) -> Tuple[SymbolMap, AssembledBytes]:
        symbol_map: SymbolMap = {}
        binary_data: AssembledBytes = []
        parsed_lines = [self._parse_line(line) for line in lines]
        widths: Dict[int, bool] = {}

        # First pass: Build symbol map
        pc = 0
        for index, (label, mnemonic, operands) in enumerate(parsed_lines):
            if label:
                if label in symbol_map:
                    raise ValueError(f"Duplicate label: {label}")
                symbol_map[label] = pc
            if not mnemonic:
                continue
            if mnemonic == "ORG":
                pc = self._parse_val(operands, symbol_map)
                continue
            if mnemonic == "DB":
                pc += len(self._data_bytes(operands, symbol_map, strict=False))
                continue
            op_bytes, wide = self._assemble_line(mnemonic, operands, pc, symbol_map, strict=False)
            widths[index] = wide
            pc += len(op_bytes)

        # Second pass: Generate binary
        pc = 0
        for index, (_, mnemonic, operands) in enumerate(parsed_lines):
            if not mnemonic:
                continue
            if mnemonic == "ORG":
                pc = self._parse_val(operands, symbol_map)
                continue
            if mnemonic == "DB":
                op_bytes = self._data_bytes(operands, symbol_map, strict=True)
            else:
                op_bytes, _ = self._assemble_line(mnemonic, operands, pc, symbol_map,
                                                  wide=widths[index])
            for i, b in enumerate(op_bytes):
                binary_data.append(AssembledByte((pc + i) & 0xFFFF, b))
            pc += len(op_bytes)

        return symbol_map, binary_data

# @intent:utility_function (アドレス, バイト) のリストを連続したイメージに変換する。隙間は fill で埋める。
def to_image(binary_data: AssembledBytes, fill: int = 0xFF) -> Tuple[int, bytes]:
    """
    アセンブル結果を (先頭アドレス, バイト列) に変換します。空の場合は (0, b"") を返します。
    """
    if not binary_data:
        return 0, b""
    base = min(addr for addr, _ in binary_data)
    end = max(addr for addr, _ in binary_data)
    image = bytearray([fill & 0xFF] * (end - base + 1))
    for addr, value in binary_data:
        image[addr - base] = value
    return base, bytes(image)
