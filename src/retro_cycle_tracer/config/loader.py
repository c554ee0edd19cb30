# retro_cycle_tracer/config/loader.py
"""
YAMLのシステム構成ファイルを読み込み、SystemConfig に変換します。
"""
import os
import yaml
from typing import Dict, Any
from .models import (
    SystemConfig, MemoryRegion, EngineSettings, PeripheralSettings, BootstrapSettings,
)

class ConfigLoader:
    def load_from_file(self, path: str) -> SystemConfig:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        config = self._parse_config(data or {})
        config.base_dir = os.path.dirname(os.path.abspath(path))
        return config

    def load_from_string(self, text: str) -> SystemConfig:
        return self._parse_config(yaml.safe_load(text) or {})

    def _parse_config(self, data: Dict[str, Any]) -> SystemConfig:
        if not isinstance(data, dict):
            raise ValueError("Configuration root must be a mapping.")
        arch = str(data.get("architecture", "MOS6502")).upper()

        # Parse Memory Map
        memory_map = []
        for region_data in data.get("memory_map", []):
            start = self._parse_int(region_data.get("start"))
            end = self._parse_int(region_data.get("end"))
            if not (0 <= start <= end <= 0xFFFF):
                raise ValueError(f"Invalid memory region range: {start:#06x}-{end:#06x}")
            memory_map.append(MemoryRegion(
                start=start,
                end=end,
                type=str(region_data.get("type", "RAM")).upper(),
                label=region_data.get("label", ""),
                image=region_data.get("image"),
            ))

        engine_data = data.get("engine", {}) or {}
        defaults = EngineSettings()
        engine = EngineSettings(
            boot_vector=self._parse_int(engine_data.get("boot_vector", defaults.boot_vector)) & 0xFFFF,
            reset_sp=self._parse_int(engine_data.get("reset_sp", defaults.reset_sp)) & 0xFF,
            startup_delay=self._parse_int(engine_data.get("startup_delay", defaults.startup_delay)),
        )
        if engine.startup_delay < 1:
            raise ValueError("startup_delay must be at least 1 tick.")

        io_data = data.get("peripherals", {}) or {}
        io_defaults = PeripheralSettings()
        peripherals = PeripheralSettings(
            buttons=self._parse_int(io_data.get("buttons", io_defaults.buttons)),
            port0=self._parse_int(io_data.get("port0", io_defaults.port0)),
            tone=self._parse_int(io_data.get("tone", io_defaults.tone)),
        )

        boot_data = data.get("bootstrap", {}) or {}
        boot_defaults = BootstrapSettings()
        bootstrap = BootstrapSettings(
            enabled=bool(boot_data.get("enabled", boot_defaults.enabled)),
            image=boot_data.get("image"),
            load_address=self._parse_int(boot_data.get("load_address", boot_defaults.load_address)),
            length=self._parse_int(boot_data.get("length", boot_defaults.length)),
            latency=self._parse_int(boot_data.get("latency", boot_defaults.latency)),
            source_offset=self._parse_int(boot_data.get("source_offset", boot_defaults.source_offset)),
        )
        if bootstrap.enabled and not bootstrap.image:
            raise ValueError("bootstrap.image is required when the bootstrap is enabled.")

        return SystemConfig(
            architecture=arch,
            memory_map=memory_map,
            engine=engine,
            peripherals=peripherals,
            bootstrap=bootstrap,
        )

    # @intent:utility_function YAMLの整数、または "$FFFC" / "0xFFFC" / "42" 形式の文字列を受け付けます。
    def _parse_int(self, value: Any) -> int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            if text.startswith("$"):
                text = "0x" + text[1:]
            try:
                return int(text, 16) if text.startswith("0x") else int(text, 10)
            except ValueError:
                pass
        raise ValueError(f"Invalid integer format: {value}")
