# src/retro_cycle_tracer/arch/mos6502/disassembler.py
"""
MOS 6502 逆アセンブラ。
"""
from typing import List

from retro_cycle_tracer.common.types import DisassemblyLine
from retro_cycle_tracer.transport.bus import MemoryBus
from retro_cycle_tracer.arch.mos6502.decoder import OPCODE_MAP, Mode, OpcodeEntry, OPERAND_LENGTH
from retro_cycle_tracer.arch.mos6502.alu import sign_extend

# @intent:responsibility オペランドバイト列をアドレッシングモードに応じた文字列に整形する。
def format_operand(entry: OpcodeEntry, address: int, operand_bytes: List[int]) -> str:
    mode = entry.mode
    if mode == Mode.IMPLIED:
        return ""
    if mode == Mode.ACCUMULATOR:
        return "A"
    if mode == Mode.RELATIVE:
        # 分岐先は命令直後のアドレスからの相対
        target = (address + 2 + sign_extend(operand_bytes[0])) & 0xFFFF
        return f"${target:04X}"

    if len(operand_bytes) == 1:
        value = operand_bytes[0]
        text = {
            Mode.IMMEDIATE: "#${:02X}",
            Mode.ZERO_PAGE: "${:02X}",
            Mode.ZERO_PAGE_X: "${:02X},X",
            Mode.ZERO_PAGE_Y: "${:02X},Y",
            Mode.INDIRECT_X: "(${:02X},X)",
            Mode.INDIRECT_Y: "(${:02X}),Y",
        }[mode]
        return text.format(value)

    value = operand_bytes[0] | (operand_bytes[1] << 8)
    text = {
        Mode.ABSOLUTE: "${:04X}",
        Mode.ABSOLUTE_X: "${:04X},X",
        Mode.ABSOLUTE_Y: "${:04X},Y",
        Mode.INDIRECT: "(${:04X})",
    }[mode]
    return text.format(value)

def _peek(bus: MemoryBus, address: int) -> int:
    address &= 0xFFFF
    return bus.peek(address) if bus.is_mapped(address) else 0x00

# @intent:responsibility 指定されたメモリ範囲を逆アセンブルする。
def disassemble(bus: MemoryBus, start_addr: int, length: int) -> List[DisassemblyLine]:
    """
    メモリを解析し、DisassemblyLine のリストを返す。
    バスログは汚さない（peekを使う）。テーブルにないバイトは DB として出力する。
    """
    results = []
    current_addr = start_addr
    end_addr = start_addr + length

    while current_addr < end_addr:
        addr = current_addr & 0xFFFF
        opcode = _peek(bus, addr)
        entry = OPCODE_MAP.get(opcode)

        if not entry:
            results.append(DisassemblyLine(addr, f"{opcode:02X}", f"DB ${opcode:02X}"))
            current_addr += 1
            continue

        operand_bytes = [_peek(bus, addr + 1 + i) for i in range(OPERAND_LENGTH[entry.mode])]
        hex_str = " ".join(f"{b:02X}" for b in [opcode] + operand_bytes)
        text = f"{entry.mnemonic} {format_operand(entry, addr, operand_bytes)}".strip()

        results.append(DisassemblyLine(addr, hex_str, text))
        current_addr += 1 + len(operand_bytes)

    return results
