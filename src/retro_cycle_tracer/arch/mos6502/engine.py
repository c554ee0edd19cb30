# src/retro_cycle_tracer/arch/mos6502/engine.py
"""
MOS 6502 実行エンジン（ティック単位のムーア型状態機械）。

`transition()` は直前ティックで確定した状態と入力だけから次の状態を計算する純粋関数です。
各ハンドラは「変更内容の辞書」を返し、最後にまとめて `replace()` で確定します。
同一ティック内で先に計算した値を後の計算が読むことはありません（ノンブロッキング代入と同じ意味論）。

バスのトランザクションは1回につき2ティックを要します。
読み出しは「リクエスト」ティックでアドレスを出し、次の「キャプチャ」ティックで data_out を取り込みます。
書き込みは1ティック目でライトイネーブルを立て、2ティック目で下げます。
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict

from retro_cycle_tracer.arch.mos6502 import alu
from retro_cycle_tracer.arch.mos6502.decoder import OPCODE_MAP, Mode, OpcodeEntry, is_illegal
from retro_cycle_tracer.arch.mos6502.state import (
    DEFAULT_RESET_SP,
    AddressMode,
    Mos6502CpuState,
    StateId,
    unpack_status,
)

Changes = Dict[str, Any]

DEFAULT_BOOT_VECTOR = 0xC000
DEFAULT_STARTUP_DELAY = 4

# @intent:data_structure エンジンの固定パラメータ（リセット時の値と起動待ち）。
@dataclass(frozen=True)
class EngineConfig:
    boot_vector: int = DEFAULT_BOOT_VECTOR
    reset_sp: int = DEFAULT_RESET_SP
    startup_delay: int = DEFAULT_STARTUP_DELAY

# @intent:data_structure 1ティック分の外部入力。data_out は前ティックのバスリクエストの応答。
@dataclass(frozen=True)
class TickInputs:
    data_out: int = 0x00
    reset: bool = False
    halt: bool = False

STORE_OPS = ("STA", "STX", "STY")
# 実効アドレスからオペランドを読まない命令
NO_READ_OPS = STORE_OPS + ("JMP", "JSR")
FLAG_OPS = {
    "CLC": ("carry", False),
    "SEC": ("carry", True),
    "CLI": ("interrupt_disable", False),
    "SEI": ("interrupt_disable", True),
    "CLV": ("overflow", False),
    "CLD": ("decimal", False),
    "SED": ("decimal", True),
}
BRANCH_OPS = ("BPL", "BMI", "BVC", "BVS", "BCC", "BCS", "BNE", "BEQ")

INDEXED_ADDRESS_MODES = {
    Mode.ABSOLUTE: AddressMode.ABSOLUTE,
    Mode.ABSOLUTE_X: AddressMode.ABSOLUTE_X,
    Mode.ABSOLUTE_Y: AddressMode.ABSOLUTE_Y,
    Mode.INDIRECT: AddressMode.INDIRECT,
}

# @intent:responsibility リセット直後の状態を生成する。全フィールドを初期化し state=RESET とする。
def initial_state(config: EngineConfig) -> Mos6502CpuState:
    return Mos6502CpuState(sp=config.reset_sp & 0xFF, state=StateId.RESET)

def _inc16(value: int) -> int:
    return (value + 1) & 0xFFFF

def _entry(state: Mos6502CpuState) -> OpcodeEntry:
    return OPCODE_MAP[state.instruction]

# @intent:responsibility アドレス解決後の遷移先。ストアとジャンプはメモリを読まない。
def _after_resolve(entry: OpcodeEntry) -> StateId:
    if entry.mnemonic in NO_READ_OPS:
        return StateId.EXECUTE
    return StateId.READ_OPERAND_REQUEST

# --- Reset / startup ---

def _reset(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"state": StateId.STARTUP_DELAY, "delay": 0}

def _startup_delay(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    if s.delay + 1 >= config.startup_delay:
        return {"pc": config.boot_vector & 0xFFFF, "delay": 0, "state": StateId.FETCH_OPCODE_REQUEST}
    return {"delay": s.delay + 1}

# --- Fetch / dispatch ---

def _fetch_opcode_request(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {
        "address": s.pc,
        "write_enable": False,
        "pc": _inc16(s.pc),
        "address_mode": AddressMode.NONE,
        "state": StateId.FETCH_OPCODE_CAPTURE,
    }

def _fetch_opcode_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"instruction": inputs.data_out & 0xFF, "state": StateId.DISPATCH}

def _dispatch(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    if is_illegal(s.instruction):
        return {"state": StateId.ERROR_TRAP}
    entry = OPCODE_MAP.get(s.instruction)
    if entry is None:
        # 未定義の組み合わせは何もせず次の命令へ
        return {"state": StateId.FETCH_OPCODE_REQUEST}

    mode = entry.mode
    if mode == Mode.IMPLIED:
        return {"state": StateId.EXECUTE}
    if mode == Mode.ACCUMULATOR:
        return {"operand": s.a, "state": StateId.EXECUTE}
    if mode in INDEXED_ADDRESS_MODES:
        address_mode = AddressMode.JSR if entry.mnemonic == "JSR" else INDEXED_ADDRESS_MODES[mode]
        return {"address_mode": address_mode, "state": StateId.FETCH_ADDRESS_LO_REQUEST}
    # 即値、ゼロページ系、(zp,X)、(zp),Y、分岐の変位
    return {"state": StateId.FETCH_BYTE_REQUEST}

# --- Address resolution ---

def _fetch_byte_request(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"address": s.pc, "pc": _inc16(s.pc), "state": StateId.FETCH_BYTE_CAPTURE}

def _fetch_byte_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    entry = _entry(s)
    byte = inputs.data_out & 0xFF
    mode = entry.mode

    if mode in (Mode.IMMEDIATE, Mode.RELATIVE):
        return {"operand": byte, "state": StateId.EXECUTE}
    if mode == Mode.INDIRECT_X:
        return {
            "effective_address": (byte + s.x) & 0xFF,
            "address_mode": AddressMode.INDIRECT_X,
            "state": StateId.FETCH_POINTER_LO_REQUEST,
        }
    if mode == Mode.INDIRECT_Y:
        return {
            "effective_address": byte,
            "address_mode": AddressMode.INDIRECT_Y,
            "state": StateId.FETCH_POINTER_LO_REQUEST,
        }

    if mode == Mode.ZERO_PAGE_X:
        address = (byte + s.x) & 0xFF
    elif mode == Mode.ZERO_PAGE_Y:
        address = (byte + s.y) & 0xFF
    else:
        address = byte
    return {
        "effective_address": address,
        "address_mode": AddressMode.ABSOLUTE,
        "state": _after_resolve(entry),
    }

def _fetch_address_lo_request(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"address": s.pc, "pc": _inc16(s.pc), "state": StateId.FETCH_ADDRESS_LO_CAPTURE}

def _fetch_address_lo_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"effective_address": inputs.data_out & 0xFF, "state": StateId.FETCH_ADDRESS_HI_REQUEST}

def _fetch_address_hi_request(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"address": s.pc, "pc": _inc16(s.pc), "state": StateId.FETCH_ADDRESS_HI_CAPTURE}

# @intent:note インデックスは結合後の16bitアドレスに加算する。ページ跨ぎの追加サイクルはない。
def _fetch_address_hi_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    base = ((inputs.data_out & 0xFF) << 8) | (s.effective_address & 0xFF)
    mode = s.address_mode

    if mode == AddressMode.JSR:
        return {"effective_address": base, "state": StateId.PUSH_RETURN_HI}
    if mode == AddressMode.INDIRECT:
        return {"effective_address": base, "state": StateId.FETCH_POINTER_LO_REQUEST}
    if mode == AddressMode.ABSOLUTE_X:
        base = (base + s.x) & 0xFFFF
    elif mode == AddressMode.ABSOLUTE_Y:
        base = (base + s.y) & 0xFFFF
    return {"effective_address": base, "state": _after_resolve(_entry(s))}

def _fetch_pointer_lo_request(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"address": s.effective_address, "state": StateId.FETCH_POINTER_LO_CAPTURE}

def _fetch_pointer_lo_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"operand": inputs.data_out & 0xFF, "state": StateId.FETCH_POINTER_HI_REQUEST}

def _fetch_pointer_hi_request(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    if s.address_mode == AddressMode.INDIRECT:
        address = _inc16(s.effective_address)
    else:
        # ゼロページ内でラップアラウンド
        address = (s.effective_address + 1) & 0xFF
    return {"address": address, "state": StateId.FETCH_POINTER_HI_CAPTURE}

# @intent:note (zp),Y は Y をポインタの下位バイトにのみ加算し、上位バイトへの桁上がりはない（実機との相違）。
def _fetch_pointer_hi_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    pointer = ((inputs.data_out & 0xFF) << 8) | (s.operand & 0xFF)

    if s.address_mode == AddressMode.INDIRECT:
        return {"pc": pointer, "address_mode": AddressMode.NONE, "state": StateId.FETCH_OPCODE_REQUEST}
    if s.address_mode == AddressMode.INDIRECT_Y:
        pointer = (pointer & 0xFF00) | ((pointer + s.y) & 0xFF)
    return {"effective_address": pointer, "state": _after_resolve(_entry(s))}

def _read_operand_request(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"address": s.effective_address, "state": StateId.READ_OPERAND_CAPTURE}

def _read_operand_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"operand": inputs.data_out & 0xFF, "state": StateId.EXECUTE}

# --- Execute ---

def _store(value: int) -> Changes:
    return {"operand": value & 0xFF, "state": StateId.STORE_OPERAND}

def _compare(register: int, s: Mos6502CpuState) -> Changes:
    result = alu.subtract(register, s.operand & 0xFF, s.carry)
    changes = {"operand": result.value, "carry": result.carry, "state": StateId.FETCH_OPCODE_REQUEST}
    changes.update(alu.nz_flags(result.value))
    return changes

def _execute(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    entry = _entry(s)
    m = entry.mnemonic
    operand = s.operand
    fetch = StateId.FETCH_OPCODE_REQUEST

    # Group one
    if m in ("ORA", "AND", "EOR"):
        return {"operand": alu.logic(m, s.a, operand & 0xFF).value, "state": StateId.WRITEBACK_A}
    if m in ("ADC", "SBC"):
        op = alu.add if m == "ADC" else alu.subtract
        result = op(s.a, operand & 0xFF, s.carry)
        return {
            "operand": result.value,
            "carry": result.carry,
            "overflow": result.overflow,
            "state": StateId.WRITEBACK_A,
        }
    if m == "CMP":
        return _compare(s.a, s)
    if m == "LDA":
        return {"state": StateId.WRITEBACK_A}
    if m == "STA":
        return _store(s.a)

    # Group two
    if m in ("ASL", "ROL", "LSR", "ROR"):
        result = alu.shift(m, operand, s.carry)
        if entry.mode == Mode.ACCUMULATOR:
            return {"operand": result.value, "carry": result.carry, "state": StateId.WRITEBACK_A}
        changes = _store(result.value)
        changes["carry"] = result.carry
        changes.update(alu.nz_flags(result.value))
        return changes
    if m in ("INC", "DEC"):
        # メモリ対象のINC/DECはフラグを更新しない
        delta = 1 if m == "INC" else -1
        return _store((operand + delta) & 0xFF)
    if m == "STX":
        return _store(s.x)
    if m == "LDX":
        return {"state": StateId.WRITEBACK_X}
    if m == "TAX":
        return {"operand": s.a, "state": StateId.WRITEBACK_X}
    if m == "TSX":
        return {"operand": s.sp, "state": StateId.WRITEBACK_X}
    if m == "TXA":
        return {"operand": s.x, "state": StateId.WRITEBACK_A}
    if m == "TXS":
        return {"sp": s.x, "state": fetch}
    if m in ("INX", "DEX"):
        delta = 1 if m == "INX" else -1
        return {"operand": (s.x + delta) & 0xFF, "state": StateId.WRITEBACK_X}

    # Group three
    if m == "STY":
        return _store(s.y)
    if m == "LDY":
        return {"state": StateId.WRITEBACK_Y}
    if m == "TAY":
        return {"operand": s.a, "state": StateId.WRITEBACK_Y}
    if m == "TYA":
        return {"operand": s.y, "state": StateId.WRITEBACK_A}
    if m in ("INY", "DEY"):
        delta = 1 if m == "INY" else -1
        return {"operand": (s.y + delta) & 0xFF, "state": StateId.WRITEBACK_Y}
    if m == "CPX":
        return _compare(s.x, s)
    if m == "CPY":
        return _compare(s.y, s)
    if m == "BIT":
        changes = alu.bit_test(s.a, operand)
        changes["state"] = fetch
        return changes
    if m == "JMP":
        return {"pc": s.effective_address, "address_mode": AddressMode.NONE, "state": fetch}
    if m in BRANCH_OPS:
        # 変位は符号拡張してから、オペランド直後を指すPCに加算する
        if alu.branch_taken((s.instruction >> 5) & 0x07, s.negative, s.overflow, s.carry, s.zero):
            return {"pc": (s.pc + alu.sign_extend(operand)) & 0xFFFF, "state": fetch}
        return {"state": fetch}
    if m in FLAG_OPS:
        flag, value = FLAG_OPS[m]
        return {flag: value, "state": fetch}
    if m == "PHA":
        return {"operand": s.a, "state": StateId.PUSH}
    if m == "PHP":
        return {"operand": s.status, "state": StateId.PUSH}
    if m in ("PLA", "PLP"):
        return {"state": StateId.POP}
    if m == "RTS":
        return {"state": StateId.POP_RETURN_LO_REQUEST}
    if m == "RTI":
        return {"state": StateId.POP_STATUS_REQUEST}

    # NOP
    return {"state": fetch}

# --- Writeback ---

def _writeback(register: str) -> Callable[[Mos6502CpuState, TickInputs, EngineConfig], Changes]:
    def handler(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
        value = s.operand & 0xFF
        changes = {register: value, "state": StateId.FETCH_OPCODE_REQUEST}
        changes.update(alu.nz_flags(value))
        return changes
    return handler

def _store_operand(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {
        "address": s.effective_address,
        "data_in": s.operand & 0xFF,
        "write_enable": True,
        "state": StateId.STORE_OPERAND_FINISH,
    }

def _end_write(next_state: StateId) -> Callable[[Mos6502CpuState, TickInputs, EngineConfig], Changes]:
    def handler(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
        return {"write_enable": False, "state": next_state}
    return handler

# --- Stack ---

def _push_byte(s: Mos6502CpuState, value: int, next_state: StateId) -> Changes:
    return {
        "address": s.sp,
        "data_in": value & 0xFF,
        "write_enable": True,
        "sp": (s.sp - 1) & 0xFF,
        "state": next_state,
    }

def _pop_request(next_state: StateId) -> Callable[[Mos6502CpuState, TickInputs, EngineConfig], Changes]:
    def handler(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
        sp = (s.sp + 1) & 0xFF
        return {"address": sp, "sp": sp, "state": next_state}
    return handler

def _push(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return _push_byte(s, s.operand, StateId.FINISH_PUSH)

def _finish_pop(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    value = inputs.data_out & 0xFF
    if _entry(s).mnemonic == "PLP":
        changes = unpack_status(value)
    else:
        changes = {"a": value}
        changes.update(alu.nz_flags(value))
    changes["state"] = StateId.FETCH_OPCODE_REQUEST
    return changes

def _pop_status_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    changes = unpack_status(inputs.data_out & 0xFF)
    changes["state"] = StateId.POP_RETURN_LO_REQUEST
    return changes

def _pop_return_lo_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {"operand": inputs.data_out & 0xFF, "state": StateId.POP_RETURN_HI_REQUEST}

# @intent:note スタックには戻り先アドレスそのものが積まれているため、復元後の補正はしない。
def _pop_return_hi_capture(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {
        "pc": ((inputs.data_out & 0xFF) << 8) | (s.operand & 0xFF),
        "state": StateId.FETCH_OPCODE_REQUEST,
    }

def _push_return_hi(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return _push_byte(s, s.pc >> 8, StateId.PUSH_RETURN_HI_FINISH)

def _push_return_lo(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return _push_byte(s, s.pc, StateId.PUSH_RETURN_LO_FINISH)

def _push_return_lo_finish(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {
        "write_enable": False,
        "pc": s.effective_address,
        "address_mode": AddressMode.NONE,
        "state": StateId.FETCH_OPCODE_REQUEST,
    }

# --- Sinks ---

# @intent:note HALT中はブレークフラグを毎ティック立て直し、HALT解除で下ろして命令フェッチへ戻る。
def _halted(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    if inputs.halt:
        return {"break_": True}
    return {"break_": False, "state": StateId.FETCH_OPCODE_REQUEST}

# @intent:responsibility HALT入力で進行中のシーケンスを放棄して停止する。書き込みは即座に下げる。
# @intent:note 起動待ち中に止めた場合は、再開時にブートベクタから始まるよう PC を先に設定する。
def _enter_halt(s: Mos6502CpuState, config: EngineConfig) -> Mos6502CpuState:
    changes = {"state": StateId.HALTED, "break_": True, "write_enable": False,
               "address_mode": AddressMode.NONE, "delay": 0}
    if s.state in (StateId.RESET, StateId.STARTUP_DELAY):
        changes["pc"] = config.boot_vector & 0xFFFF
    return s.replace(**changes)

def _error_trap(s: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Changes:
    return {}

HANDLERS: Dict[StateId, Callable[[Mos6502CpuState, TickInputs, EngineConfig], Changes]] = {
    StateId.RESET: _reset,
    StateId.STARTUP_DELAY: _startup_delay,
    StateId.FETCH_OPCODE_REQUEST: _fetch_opcode_request,
    StateId.FETCH_OPCODE_CAPTURE: _fetch_opcode_capture,
    StateId.DISPATCH: _dispatch,
    StateId.FETCH_BYTE_REQUEST: _fetch_byte_request,
    StateId.FETCH_BYTE_CAPTURE: _fetch_byte_capture,
    StateId.FETCH_ADDRESS_LO_REQUEST: _fetch_address_lo_request,
    StateId.FETCH_ADDRESS_LO_CAPTURE: _fetch_address_lo_capture,
    StateId.FETCH_ADDRESS_HI_REQUEST: _fetch_address_hi_request,
    StateId.FETCH_ADDRESS_HI_CAPTURE: _fetch_address_hi_capture,
    StateId.FETCH_POINTER_LO_REQUEST: _fetch_pointer_lo_request,
    StateId.FETCH_POINTER_LO_CAPTURE: _fetch_pointer_lo_capture,
    StateId.FETCH_POINTER_HI_REQUEST: _fetch_pointer_hi_request,
    StateId.FETCH_POINTER_HI_CAPTURE: _fetch_pointer_hi_capture,
    StateId.READ_OPERAND_REQUEST: _read_operand_request,
    StateId.READ_OPERAND_CAPTURE: _read_operand_capture,
    StateId.EXECUTE: _execute,
    StateId.WRITEBACK_A: _writeback("a"),
    StateId.WRITEBACK_X: _writeback("x"),
    StateId.WRITEBACK_Y: _writeback("y"),
    StateId.STORE_OPERAND: _store_operand,
    StateId.STORE_OPERAND_FINISH: _end_write(StateId.FETCH_OPCODE_REQUEST),
    StateId.PUSH: _push,
    StateId.FINISH_PUSH: _end_write(StateId.FETCH_OPCODE_REQUEST),
    StateId.POP: _pop_request(StateId.FINISH_POP),
    StateId.FINISH_POP: _finish_pop,
    StateId.POP_STATUS_REQUEST: _pop_request(StateId.POP_STATUS_CAPTURE),
    StateId.POP_STATUS_CAPTURE: _pop_status_capture,
    StateId.POP_RETURN_LO_REQUEST: _pop_request(StateId.POP_RETURN_LO_CAPTURE),
    StateId.POP_RETURN_LO_CAPTURE: _pop_return_lo_capture,
    StateId.POP_RETURN_HI_REQUEST: _pop_request(StateId.POP_RETURN_HI_CAPTURE),
    StateId.POP_RETURN_HI_CAPTURE: _pop_return_hi_capture,
    StateId.PUSH_RETURN_HI: _push_return_hi,
    StateId.PUSH_RETURN_HI_FINISH: _end_write(StateId.PUSH_RETURN_LO),
    StateId.PUSH_RETURN_LO: _push_return_lo,
    StateId.PUSH_RETURN_LO_FINISH: _push_return_lo_finish,
    StateId.HALTED: _halted,
    StateId.ERROR_TRAP: _error_trap,
}

# @intent:responsibility 1ティック分の状態遷移。リセット入力は全ての状態より、HALT入力はERROR_TRAP以外の全ての状態より優先される。
# @intent:pre-condition `state` は前ティックで確定した状態であり、この関数内で変更されない。
def transition(state: Mos6502CpuState, inputs: TickInputs, config: EngineConfig) -> Mos6502CpuState:
    """
    直前の確定状態と今回の入力から、次ティックの状態を返します。
    バスへの出力（address, data_in, write_enable）も戻り値の状態に含まれます。
    """
    if inputs.reset:
        return initial_state(config)
    if inputs.halt and state.state not in (StateId.HALTED, StateId.ERROR_TRAP):
        return _enter_halt(state, config)
    changes = HANDLERS[state.state](state, inputs, config)
    if not changes:
        return state
    return state.replace(**changes)
