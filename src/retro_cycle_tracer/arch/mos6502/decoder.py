# src/retro_cycle_tracer/arch/mos6502/decoder.py
"""
MOS 6502 命令デコーダ。

命令バイトを `aaabbbcc` のビットフィールドに分解する純粋関数と、
それを元に一度だけ構築される命令テーブル（OPCODE_MAP）を提供します。
エンジンのディスパッチ、逆アセンブラ、アセンブラはすべてこのテーブルを参照します。
"""
from enum import Enum
from typing import Dict, NamedTuple, Optional, Tuple

# @intent:responsibility 命令バイトを分解した結果。
class Decoded(NamedTuple):
    cls: int         # cc: 命令クラス (bits 1..0)
    operation: int   # aaa: 演算 (bits 7..5)
    mode_group: int  # bbb: アドレッシングモードグループ (bits 4..2)

# @intent:responsibility オペランドの取得経路（命令長とアドレス解決の手順を決める）。
class Mode(Enum):
    IMPLIED = "IMPLIED"
    ACCUMULATOR = "ACCUMULATOR"
    IMMEDIATE = "IMMEDIATE"
    ZERO_PAGE = "ZERO_PAGE"
    ZERO_PAGE_X = "ZERO_PAGE_X"
    ZERO_PAGE_Y = "ZERO_PAGE_Y"
    ABSOLUTE = "ABSOLUTE"
    ABSOLUTE_X = "ABSOLUTE_X"
    ABSOLUTE_Y = "ABSOLUTE_Y"
    INDIRECT_X = "INDIRECT_X"
    INDIRECT_Y = "INDIRECT_Y"
    INDIRECT = "INDIRECT"
    RELATIVE = "RELATIVE"

# @intent:data_structure 命令テーブルのエントリ。
class OpcodeEntry(NamedTuple):
    mnemonic: str
    mode: Mode

CLASS_GROUP_THREE = 0b00
CLASS_GROUP_ONE = 0b01
CLASS_GROUP_TWO = 0b10
CLASS_ILLEGAL = 0b11

# @intent:responsibility 命令バイトを (class, operation, mode_group) に分解する。全256値で定義される。
def decode(instruction: int) -> Decoded:
    instruction &= 0xFF
    return Decoded(
        cls=instruction & 0x03,
        operation=(instruction >> 5) & 0x07,
        mode_group=(instruction >> 2) & 0x07,
    )

DECODE_TABLE: Tuple[Decoded, ...] = tuple(decode(i) for i in range(256))

OPERAND_LENGTH: Dict[Mode, int] = {
    Mode.IMPLIED: 0,
    Mode.ACCUMULATOR: 0,
    Mode.IMMEDIATE: 1,
    Mode.ZERO_PAGE: 1,
    Mode.ZERO_PAGE_X: 1,
    Mode.ZERO_PAGE_Y: 1,
    Mode.INDIRECT_X: 1,
    Mode.INDIRECT_Y: 1,
    Mode.RELATIVE: 1,
    Mode.ABSOLUTE: 2,
    Mode.ABSOLUTE_X: 2,
    Mode.ABSOLUTE_Y: 2,
    Mode.INDIRECT: 2,
}

# --- Group one (cc=01) ---
GROUP_ONE_OPS = ("ORA", "AND", "EOR", "ADC", "STA", "LDA", "CMP", "SBC")
GROUP_ONE_MODES = (
    Mode.INDIRECT_X, Mode.ZERO_PAGE, Mode.IMMEDIATE, Mode.ABSOLUTE,
    Mode.INDIRECT_Y, Mode.ZERO_PAGE_X, Mode.ABSOLUTE_Y, Mode.ABSOLUTE_X,
)

# --- Group two (cc=10) ---
GROUP_TWO_OPS = ("ASL", "ROL", "LSR", "ROR", "STX", "LDX", "DEC", "INC")
GROUP_TWO_MODES = {
    0b000: Mode.IMMEDIATE,
    0b001: Mode.ZERO_PAGE,
    0b010: Mode.ACCUMULATOR,
    0b011: Mode.ABSOLUTE,
    0b101: Mode.ZERO_PAGE_X,
    0b111: Mode.ABSOLUTE_X,
}
SHIFT_OPS = ("ASL", "ROL", "LSR", "ROR")
# bbb=010 / bbb=110 の単独命令 (aaa -> mnemonic)
GROUP_TWO_IMPLIED = {0b100: "TXA", 0b101: "TAX", 0b110: "DEX", 0b111: "NOP"}
GROUP_TWO_STACK = {0b100: "TXS", 0b101: "TSX"}

# --- Group three (cc=00) ---
GROUP_THREE_OPS = {0b001: "BIT", 0b010: "JMP", 0b011: "JMP", 0b100: "STY", 0b101: "LDY", 0b110: "CPY", 0b111: "CPX"}
GROUP_THREE_MODES = {
    0b000: Mode.IMMEDIATE,
    0b001: Mode.ZERO_PAGE,
    0b011: Mode.ABSOLUTE,
    0b101: Mode.ZERO_PAGE_X,
    0b111: Mode.ABSOLUTE_X,
}
GROUP_THREE_VALID = {
    "BIT": (Mode.ZERO_PAGE, Mode.ABSOLUTE),
    "JMP": (Mode.ABSOLUTE,),
    "STY": (Mode.ZERO_PAGE, Mode.ABSOLUTE, Mode.ZERO_PAGE_X),
    "LDY": (Mode.IMMEDIATE, Mode.ZERO_PAGE, Mode.ABSOLUTE, Mode.ZERO_PAGE_X, Mode.ABSOLUTE_X),
    "CPY": (Mode.IMMEDIATE, Mode.ZERO_PAGE, Mode.ABSOLUTE),
    "CPX": (Mode.IMMEDIATE, Mode.ZERO_PAGE, Mode.ABSOLUTE),
}
# xxy10000: xx がフラグ、y が比較値
BRANCH_OPS = ("BPL", "BMI", "BVC", "BVS", "BCC", "BCS", "BNE", "BEQ")
# bbb=010 (xx8)
GROUP_THREE_PUSH_PULL = ("PHP", "PLP", "PHA", "PLA", "DEY", "TAY", "INY", "INX")
# bbb=110 (xx18)
GROUP_THREE_FLAGS = ("CLC", "SEC", "CLI", "SEI", "TYA", "CLV", "CLD", "SED")
# bbb=000 の制御命令 (BRK は未実装のため含めない)
GROUP_THREE_CONTROL = {0b001: ("JSR", Mode.ABSOLUTE), 0b010: ("RTI", Mode.IMPLIED), 0b011: ("RTS", Mode.IMPLIED)}

def _group_one(fields: Decoded) -> Optional[OpcodeEntry]:
    mnemonic = GROUP_ONE_OPS[fields.operation]
    mode = GROUP_ONE_MODES[fields.mode_group]
    if mnemonic == "STA" and mode == Mode.IMMEDIATE:
        return None
    return OpcodeEntry(mnemonic, mode)

def _group_two(fields: Decoded) -> Optional[OpcodeEntry]:
    mnemonic = GROUP_TWO_OPS[fields.operation]
    if fields.mode_group == 0b010 and mnemonic not in SHIFT_OPS:
        return OpcodeEntry(GROUP_TWO_IMPLIED[fields.operation], Mode.IMPLIED)
    if fields.mode_group == 0b110:
        stack_op = GROUP_TWO_STACK.get(fields.operation)
        return OpcodeEntry(stack_op, Mode.IMPLIED) if stack_op else None

    mode = GROUP_TWO_MODES.get(fields.mode_group)
    if mode is None:
        return None
    if mode == Mode.IMMEDIATE and mnemonic != "LDX":
        return None
    if mnemonic in ("STX", "LDX"):
        # STX/LDX はインデックスに X ではなく Y を使う
        if mode == Mode.ZERO_PAGE_X:
            mode = Mode.ZERO_PAGE_Y
        elif mode == Mode.ABSOLUTE_X:
            if mnemonic == "STX":
                return None
            mode = Mode.ABSOLUTE_Y
    return OpcodeEntry(mnemonic, mode)

def _group_three(fields: Decoded) -> Optional[OpcodeEntry]:
    if fields.mode_group == 0b100:
        return OpcodeEntry(BRANCH_OPS[fields.operation], Mode.RELATIVE)
    if fields.mode_group == 0b010:
        return OpcodeEntry(GROUP_THREE_PUSH_PULL[fields.operation], Mode.IMPLIED)
    if fields.mode_group == 0b110:
        return OpcodeEntry(GROUP_THREE_FLAGS[fields.operation], Mode.IMPLIED)
    if fields.mode_group == 0b000 and fields.operation in GROUP_THREE_CONTROL:
        mnemonic, mode = GROUP_THREE_CONTROL[fields.operation]
        return OpcodeEntry(mnemonic, mode)

    mnemonic = GROUP_THREE_OPS.get(fields.operation)
    mode = GROUP_THREE_MODES.get(fields.mode_group)
    if mnemonic is None or mode is None:
        return None
    if fields.operation == 0b011 and mode == Mode.ABSOLUTE:
        return OpcodeEntry("JMP", Mode.INDIRECT)
    if fields.operation == 0b011:
        return None
    if mode not in GROUP_THREE_VALID[mnemonic]:
        return None
    return OpcodeEntry(mnemonic, mode)

# @intent:responsibility 命令バイトに対応する命令エントリを返す。未定義の組み合わせはNone（エンジンでは no-op）。
def lookup(instruction: int) -> Optional[OpcodeEntry]:
    fields = DECODE_TABLE[instruction & 0xFF]
    if fields.cls == CLASS_GROUP_ONE:
        return _group_one(fields)
    if fields.cls == CLASS_GROUP_TWO:
        return _group_two(fields)
    if fields.cls == CLASS_GROUP_THREE:
        return _group_three(fields)
    return None

def _build_opcode_map() -> Dict[int, OpcodeEntry]:
    table = {}
    for opcode in range(256):
        entry = lookup(opcode)
        if entry is not None:
            table[opcode] = entry
    return table

OPCODE_MAP: Dict[int, OpcodeEntry] = _build_opcode_map()

def is_illegal(instruction: int) -> bool:
    return DECODE_TABLE[instruction & 0xFF].cls == CLASS_ILLEGAL

def instruction_length(entry: OpcodeEntry) -> int:
    return 1 + OPERAND_LENGTH[entry.mode]
