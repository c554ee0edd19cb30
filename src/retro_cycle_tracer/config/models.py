from dataclasses import dataclass, field
from typing import List, Optional

from retro_cycle_tracer.arch.mos6502.engine import DEFAULT_BOOT_VECTOR, DEFAULT_STARTUP_DELAY
from retro_cycle_tracer.arch.mos6502.state import DEFAULT_RESET_SP
from retro_cycle_tracer.loader.eeprom import DEFAULT_TRANSFER_LENGTH

@dataclass
class MemoryRegion:
    start: int
    end: int
    type: str  # "RAM", "ROM", "PERIPHERAL"
    label: str = ""
    image: Optional[str] = None  # 配置するプログラムイメージ（領域の先頭から）

    @property
    def size(self) -> int:
        return self.end - self.start + 1

@dataclass
class EngineSettings:
    boot_vector: int = DEFAULT_BOOT_VECTOR
    reset_sp: int = DEFAULT_RESET_SP
    startup_delay: int = DEFAULT_STARTUP_DELAY

@dataclass
class PeripheralSettings:
    buttons: int = 0x00
    port0: int = 0x08
    tone: int = 0x0A

@dataclass
class BootstrapSettings:
    enabled: bool = False
    image: Optional[str] = None
    load_address: int = 0x0000
    length: int = DEFAULT_TRANSFER_LENGTH
    latency: int = 2
    source_offset: int = 0

@dataclass
class SystemConfig:
    architecture: str = "MOS6502"
    memory_map: List[MemoryRegion] = field(default_factory=list)
    engine: EngineSettings = field(default_factory=EngineSettings)
    peripherals: PeripheralSettings = field(default_factory=PeripheralSettings)
    bootstrap: BootstrapSettings = field(default_factory=BootstrapSettings)
    base_dir: Optional[str] = None  # 相対パスのイメージを解決する基準ディレクトリ

# @intent:responsibility 標準のメモリマップ（RAM / 周辺機器 / ROM）を持つ構成を返します。
def default_config() -> SystemConfig:
    return SystemConfig(
        architecture="MOS6502",
        memory_map=[
            MemoryRegion(start=0x0000, end=0x0FFF, type="RAM", label="ram"),
            MemoryRegion(start=0x8000, end=0x80FF, type="PERIPHERAL", label="io"),
            MemoryRegion(start=0xC000, end=0xFFFF, type="ROM", label="rom"),
        ],
    )
