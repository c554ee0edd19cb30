# src/retro_cycle_tracer/arch/mos6502/alu.py
"""
MOS 6502 算術論理演算ユニット (ALU) とフラグ導出。

すべて純粋関数で、エンジンのEXECUTE/WRITEBACK状態から1ティックにつき1回呼ばれます。
演算結果は必要に応じて9bit幅で返し、キャリーはビット8から導出します。
BCD（デシマルモード）補正は行いません。Dフラグは保存されるだけです。
"""
from typing import Dict, NamedTuple, Optional

# @intent:data_structure ALUの演算結果。carry/overflow が None の場合、そのフラグは変更しない。
class AluResult(NamedTuple):
    value: int
    carry: Optional[bool] = None
    overflow: Optional[bool] = None

def nz_flags(value: int) -> Dict[str, bool]:
    value &= 0xFF
    return {"zero": value == 0, "negative": (value & 0x80) != 0}

def sign_extend(value: int) -> int:
    value &= 0xFF
    return value - 0x100 if value & 0x80 else value

# --- Logical Operations ---

def logic(mnemonic: str, a: int, operand: int) -> AluResult:
    if mnemonic == "ORA":
        return AluResult(a | operand)
    if mnemonic == "AND":
        return AluResult(a & operand)
    if mnemonic == "EOR":
        return AluResult(a ^ operand)
    raise ValueError(f"Not a logical operation: {mnemonic}")

# --- Arithmetic Operations ---

# @intent:responsibility ADC。9bitの和を返し、ビット8をキャリーとする。
def add(a: int, operand: int, carry_in: bool) -> AluResult:
    wide = a + operand + (1 if carry_in else 0)
    result = wide & 0xFF
    overflow = (~(a ^ operand) & (a ^ result) & 0x80) != 0
    return AluResult(wide & 0x1FF, carry=bool(wide & 0x100), overflow=overflow)

# @intent:responsibility SBC/CMP/CPX/CPY。{carry, register} - operand を9bit幅で計算し、ビット8を新しいキャリーとする。
# @intent:note 反転オペランドとの加算ではなく、減算そのものを行う。キャリー0のときの結果は実機のSBCと異なる。
def subtract(register: int, operand: int, carry_in: bool) -> AluResult:
    minuend = ((1 if carry_in else 0) << 8) | register
    wide = (minuend - operand) & 0x1FF
    result = wide & 0xFF
    overflow = ((register ^ operand) & (register ^ result) & 0x80) != 0
    return AluResult(wide, carry=bool(wide & 0x100), overflow=overflow)

# --- Shift / Rotate ---

def shift(mnemonic: str, value: int, carry_in: bool) -> AluResult:
    value &= 0xFF
    if mnemonic == "ASL":
        return AluResult((value << 1) & 0xFF, carry=bool(value & 0x80))
    if mnemonic == "ROL":
        return AluResult(((value << 1) | (1 if carry_in else 0)) & 0xFF, carry=bool(value & 0x80))
    if mnemonic == "LSR":
        return AluResult(value >> 1, carry=bool(value & 0x01))
    if mnemonic == "ROR":
        return AluResult((value >> 1) | (0x80 if carry_in else 0), carry=bool(value & 0x01))
    raise ValueError(f"Not a shift operation: {mnemonic}")

# @intent:responsibility BIT命令のフラグ。N, V はメモリのビット7, 6、Z は A & M で決まる。
def bit_test(a: int, operand: int) -> Dict[str, bool]:
    return {
        "zero": (a & operand & 0xFF) == 0,
        "negative": (operand & 0x80) != 0,
        "overflow": (operand & 0x40) != 0,
    }

# @intent:responsibility 分岐条件。aaa の上位2bitでフラグ (N, V, C, Z) を選び、最下位bitと比較する。
def branch_taken(operation: int, negative: bool, overflow: bool, carry: bool, zero: bool) -> bool:
    flag = (negative, overflow, carry, zero)[(operation >> 1) & 0x03]
    return flag == bool(operation & 0x01)
