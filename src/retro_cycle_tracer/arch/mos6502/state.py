# src/retro_cycle_tracer/arch/mos6502/state.py
"""
MOS 6502 CPUの状態定義。

レジスタ、フラグ、デコード用の一時レジスタ、FSMの状態、およびバスへの出力レジスタを
1つの不変データクラスにまとめます。
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict

from retro_cycle_tracer.core.state import CpuState
from retro_cycle_tracer.transport.bus import BusRequest

# @intent:responsibility 実行エンジンの状態（ティックごとの振る舞いを決める唯一の制御レジスタ）。
class StateId(Enum):
    RESET = "RESET"
    STARTUP_DELAY = "STARTUP_DELAY"
    FETCH_OPCODE_REQUEST = "FETCH_OPCODE_REQUEST"
    FETCH_OPCODE_CAPTURE = "FETCH_OPCODE_CAPTURE"
    DISPATCH = "DISPATCH"
    # オペランドフェッチ（即値・ゼロページ・分岐の変位）
    FETCH_BYTE_REQUEST = "FETCH_BYTE_REQUEST"
    FETCH_BYTE_CAPTURE = "FETCH_BYTE_CAPTURE"
    # 絶対アドレスフェッチ
    FETCH_ADDRESS_LO_REQUEST = "FETCH_ADDRESS_LO_REQUEST"
    FETCH_ADDRESS_LO_CAPTURE = "FETCH_ADDRESS_LO_CAPTURE"
    FETCH_ADDRESS_HI_REQUEST = "FETCH_ADDRESS_HI_REQUEST"
    FETCH_ADDRESS_HI_CAPTURE = "FETCH_ADDRESS_HI_CAPTURE"
    # 間接アドレスのポインタ読み出し
    FETCH_POINTER_LO_REQUEST = "FETCH_POINTER_LO_REQUEST"
    FETCH_POINTER_LO_CAPTURE = "FETCH_POINTER_LO_CAPTURE"
    FETCH_POINTER_HI_REQUEST = "FETCH_POINTER_HI_REQUEST"
    FETCH_POINTER_HI_CAPTURE = "FETCH_POINTER_HI_CAPTURE"
    # 実効アドレスからのオペランド読み出し
    READ_OPERAND_REQUEST = "READ_OPERAND_REQUEST"
    READ_OPERAND_CAPTURE = "READ_OPERAND_CAPTURE"
    EXECUTE = "EXECUTE"
    WRITEBACK_A = "WRITEBACK_A"
    WRITEBACK_X = "WRITEBACK_X"
    WRITEBACK_Y = "WRITEBACK_Y"
    STORE_OPERAND = "STORE_OPERAND"
    STORE_OPERAND_FINISH = "STORE_OPERAND_FINISH"
    PUSH = "PUSH"
    FINISH_PUSH = "FINISH_PUSH"
    POP = "POP"
    FINISH_POP = "FINISH_POP"
    POP_STATUS_REQUEST = "POP_STATUS_REQUEST"
    POP_STATUS_CAPTURE = "POP_STATUS_CAPTURE"
    POP_RETURN_LO_REQUEST = "POP_RETURN_LO_REQUEST"
    POP_RETURN_LO_CAPTURE = "POP_RETURN_LO_CAPTURE"
    POP_RETURN_HI_REQUEST = "POP_RETURN_HI_REQUEST"
    POP_RETURN_HI_CAPTURE = "POP_RETURN_HI_CAPTURE"
    PUSH_RETURN_HI = "PUSH_RETURN_HI"
    PUSH_RETURN_HI_FINISH = "PUSH_RETURN_HI_FINISH"
    PUSH_RETURN_LO = "PUSH_RETURN_LO"
    PUSH_RETURN_LO_FINISH = "PUSH_RETURN_LO_FINISH"
    HALTED = "HALTED"
    ERROR_TRAP = "ERROR_TRAP"

# @intent:responsibility 絶対アドレス系フェッチの後処理を決めるアドレッシングモードレジスタ。
class AddressMode(Enum):
    NONE = "NONE"
    ABSOLUTE = "ABSOLUTE"
    ABSOLUTE_X = "ABSOLUTE_X"
    ABSOLUTE_Y = "ABSOLUTE_Y"
    INDIRECT_X = "INDIRECT_X"
    INDIRECT_Y = "INDIRECT_Y"
    INDIRECT = "INDIRECT"  # JMP ($nnnn)
    JSR = "JSR"

# Status byte bit masks (bit 5 is always 0)
C_FLAG = 0x01
Z_FLAG = 0x02
I_FLAG = 0x04
D_FLAG = 0x08
B_FLAG = 0x10
V_FLAG = 0x40
N_FLAG = 0x80

DEFAULT_RESET_SP = 0x3F

# @intent:responsibility MOS 6502 エンジンの状態（レジスタ、フラグ、一時レジスタ、バス出力）を保持する。
@dataclass(frozen=True)
class Mos6502CpuState(CpuState):
    """
    MOS 6502 実行エンジンの状態。

    `sp` は8bitの生のインデックスで、そのままバスアドレスとして使われます（$0100 のオフセットなし）。
    `operand` はALUの9bit演算結果を保持できるため、writeback前にビット8（キャリー）を観測できます。
    """
    sp: int = DEFAULT_RESET_SP
    a: int = 0
    x: int = 0
    y: int = 0

    negative: bool = False
    overflow: bool = False
    break_: bool = False
    decimal: bool = False
    interrupt_disable: bool = False
    carry: bool = False
    zero: bool = False

    instruction: int = 0x00
    address_mode: AddressMode = AddressMode.NONE
    effective_address: int = 0x0000
    operand: int = 0x0000

    state: StateId = StateId.RESET
    delay: int = 0

    # バスへの出力レジスタ（ティックの終わりにバスがサンプリングする）
    address: int = 0x0000
    data_in: int = 0x00
    write_enable: bool = False

    # @intent:responsibility フラグを8bitのステータスバイトにパックする。
    @property
    def status(self) -> int:
        return pack_status(self)

    # @intent:responsibility 現在のバス出力レジスタをリクエストとして返す。
    def bus_request(self) -> BusRequest:
        return BusRequest(address=self.address, data_in=self.data_in, write_enable=self.write_enable)

def pack_status(state: Mos6502CpuState) -> int:
    p = 0
    if state.carry: p |= C_FLAG
    if state.zero: p |= Z_FLAG
    if state.interrupt_disable: p |= I_FLAG
    if state.decimal: p |= D_FLAG
    if state.break_: p |= B_FLAG
    if state.overflow: p |= V_FLAG
    if state.negative: p |= N_FLAG
    return p

# @intent:responsibility ステータスバイトをフラグの変更辞書に展開する。
# @intent:note ブレークフラグは外部HALT中のみ1になるため、スタックからの復元対象外とする。
def unpack_status(value: int) -> Dict[str, bool]:
    return {
        "carry": bool(value & C_FLAG),
        "zero": bool(value & Z_FLAG),
        "interrupt_disable": bool(value & I_FLAG),
        "decimal": bool(value & D_FLAG),
        "overflow": bool(value & V_FLAG),
        "negative": bool(value & N_FLAG),
    }
