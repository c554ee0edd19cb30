# src/retro_cycle_tracer/arch/mos6502/__init__.py
"""
MOS 6502 Architecture Package
"""
from .cpu import Mos6502Cpu
from .engine import EngineConfig, TickInputs, transition
from .state import Mos6502CpuState, StateId
