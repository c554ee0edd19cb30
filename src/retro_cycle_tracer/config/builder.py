import logging
import os
from pathlib import Path
from typing import Optional, Tuple

from retro_cycle_tracer.transport.bus import MemoryBus, RAM, ROM
from retro_cycle_tracer.transport.peripherals import Peripherals, PeripheralLayout
from retro_cycle_tracer.loader.eeprom import EepromLoader, SerialEeprom
from retro_cycle_tracer.loader.loader import load_image
from retro_cycle_tracer.arch.mos6502.cpu import Mos6502Cpu
from retro_cycle_tracer.arch.mos6502.engine import EngineConfig
from .models import SystemConfig, MemoryRegion, BootstrapSettings

logger = logging.getLogger(__name__)

SUPPORTED_ARCHITECTURES = ("MOS6502",)

# @intent:responsibility システム構成（Config）に基づいて、Bus、Device、CPUを生成・接続し、イメージを配置します。
class SystemBuilder:
    def __init__(self):
        self.peripherals: Optional[Peripherals] = None

    def build_system(self, config: SystemConfig) -> Tuple[Mos6502Cpu, MemoryBus]:
        if config.architecture.upper() not in SUPPORTED_ARCHITECTURES:
            raise ValueError(f"Unsupported architecture: {config.architecture}")

        bus = MemoryBus()
        self.peripherals = None

        for region in config.memory_map:
            bus.register_device(region.start, region.end, self._create_device(region, config))

        symbol_map = {}
        for region in config.memory_map:
            if region.image:
                symbol_map.update(load_image(self._resolve_path(region.image, config), bus, region.start))

        engine = config.engine
        cpu = Mos6502Cpu(
            bus,
            EngineConfig(
                boot_vector=engine.boot_vector,
                reset_sp=engine.reset_sp,
                startup_delay=engine.startup_delay,
            ),
            bootstrap=self._create_bootstrap(config.bootstrap, config),
        )
        if symbol_map:
            cpu.set_symbol_map(symbol_map)

        return cpu, bus

    def _create_device(self, region: MemoryRegion, config: SystemConfig):
        if region.type == "RAM":
            return RAM(region.size)
        if region.type == "ROM":
            return ROM(region.size)
        if region.type == "PERIPHERAL":
            io = config.peripherals
            device = Peripherals(region.size, PeripheralLayout(buttons=io.buttons, port0=io.port0, tone=io.tone))
            if self.peripherals is None:
                self.peripherals = device
            return device
        logger.warning("Unknown device type '%s' for range %04X-%04X, defaulting to RAM",
                       region.type, region.start, region.end)
        return RAM(region.size)

    def _create_bootstrap(self, settings: BootstrapSettings, config: SystemConfig) -> Optional[EepromLoader]:
        if not settings.enabled:
            return None
        image = Path(self._resolve_path(settings.image, config)).read_bytes()
        logger.info("EEPROM bootstrap enabled: %d bytes to $%04X", settings.length, settings.load_address)
        return EepromLoader(
            SerialEeprom(image, latency=settings.latency),
            load_address=settings.load_address,
            length=settings.length,
            source_offset=settings.source_offset,
        )

    def _resolve_path(self, path: str, config: SystemConfig) -> str:
        if config.base_dir and not os.path.isabs(path):
            return os.path.join(config.base_dir, path)
        return path
