# src/retro_cycle_tracer/cli.py
"""
コマンドラインのエントリポイント。

run    : YAML構成からシステムを組み立て、指定ティック数だけ実行する
disasm : イメージファイルを逆アセンブルする
asm    : アセンブリソースをバイナリイメージへ変換する
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from retro_cycle_tracer.config.loader import ConfigLoader
from retro_cycle_tracer.config.builder import SystemBuilder
from retro_cycle_tracer.core.snapshot import Snapshot
from retro_cycle_tracer.transport.bus import MemoryBus, RAM
from retro_cycle_tracer.loader.loader import load_image
from retro_cycle_tracer.arch.mos6502.assembler import Mos6502Assembler, to_image
from retro_cycle_tracer.arch.mos6502.disassembler import disassemble

logger = logging.getLogger("retro_cycle_tracer")

def _parse_address(text: str) -> int:
    text = text.strip()
    if text.startswith("$"):
        return int(text[1:], 16)
    return int(text, 0)

def _format_tick(snapshot: Snapshot) -> str:
    state = snapshot.state
    bus = " ".join(
        f"{access.access_type.value[0]}:{access.address:04X}={access.data:02X}"
        for access in snapshot.bus_activity
    )
    return (
        f"{snapshot.metadata.tick_count:8d} {snapshot.metadata.state_name:<24} "
        f"PC={state.pc:04X} A={state.a:02X} X={state.x:02X} Y={state.y:02X} "
        f"S={state.sp:02X} P={state.status:02X} {bus}"
    ).rstrip()

def _cmd_run(args: argparse.Namespace) -> int:
    config = ConfigLoader().load_from_file(args.config)
    builder = SystemBuilder()
    cpu, _ = builder.build_system(config)

    for _ in range(args.ticks):
        snapshot = cpu.tick()
        if args.trace:
            print(_format_tick(snapshot))
        if args.halt_at_trap and cpu.trapped:
            logger.warning("Stopped at error trap after %d ticks", cpu.tick_count)
            break

    registers = cpu.get_register_map()
    print(" ".join(f"{name}={value:04X}" if name == "PC" else f"{name}={value:02X}"
                   for name, value in registers.items()))
    print(f"state={cpu.state_id.value} ticks={cpu.tick_count} instructions={cpu.instruction_count}")
    if builder.peripherals is not None:
        io = builder.peripherals
        print(f"port0={io.port0:02X} tone={io.tone}")
    return 1 if cpu.trapped else 0

def _cmd_disasm(args: argparse.Namespace) -> int:
    bus = MemoryBus()
    bus.register_device(0x0000, 0xFFFF, RAM(0x10000))
    load_image(args.image, bus, args.base)
    length = args.length
    if length is None:
        # Intel HEX はファイルサイズとイメージ長が一致しない
        is_hex = Path(args.image).suffix.lower() in (".hex", ".ihx")
        length = 0x100 if is_hex else Path(args.image).stat().st_size
    for address, hex_bytes, text in disassemble(bus, args.base, length):
        print(f"{address:04X}  {hex_bytes:<9} {text}")
    return 0

def _cmd_asm(args: argparse.Namespace) -> int:
    with open(args.source, 'r', encoding="utf-8") as f:
        lines = f.readlines()
    symbol_map, binary_data = Mos6502Assembler().assemble(lines)
    base, image = to_image(binary_data, fill=args.fill)
    Path(args.output).write_bytes(image)
    logger.info("Assembled %d bytes at $%04X to %s", len(image), base, args.output)
    for name, address in sorted(symbol_map.items(), key=lambda item: item[1]):
        logger.debug("%-16s $%04X", name, address)
    print(f"${base:04X} {len(image)} bytes")
    return 0

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="retro-cycle-tracer",
                                     description="Tick-accurate MOS 6502 compatible engine tracer.")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a configured system")
    run.add_argument("config", help="Path to the YAML system configuration")
    run.add_argument("--ticks", type=int, default=1000, help="Number of ticks to run")
    run.add_argument("--trace", action="store_true", help="Print one line per tick")
    run.add_argument("--halt-at-trap", action="store_true", help="Stop early when the engine traps")
    run.set_defaults(func=_cmd_run)

    disasm = subparsers.add_parser("disasm", help="Disassemble an image file")
    disasm.add_argument("image", help="Binary, Intel HEX or assembly source")
    disasm.add_argument("--base", type=_parse_address, default=0xC000, help="Load/start address")
    disasm.add_argument("--length", type=_parse_address, default=None, help="Number of bytes")
    disasm.set_defaults(func=_cmd_disasm)

    asm = subparsers.add_parser("asm", help="Assemble a source file to a binary image")
    asm.add_argument("source", help="Assembly source")
    asm.add_argument("-o", "--output", required=True, help="Output binary path")
    asm.add_argument("--fill", type=_parse_address, default=0xFF, help="Fill byte for gaps")
    asm.set_defaults(func=_cmd_asm)
    return parser

# @intent:responsibility 引数を解析し、ログを設定してサブコマンドを実行します。
def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except (OSError, ValueError, IndexError) as e:
        logger.error("%s", e)
        return 2

if __name__ == '__main__':
    sys.exit(main())
