# retro_cycle_tracer/core/state.py
"""
Core Layer (CPU状態)

このモジュールは、CPUの基本的な状態（レジスタ群）を保持するデータ構造を定義します。
"""
from dataclasses import dataclass, replace

# @intent:responsibility CPUのレジスタ状態を保持します。アーキテクチャ固有のレジスタはこれを拡張します。
# @intent:rationale 状態は不変とし、ティックごとに新しいインスタンスを生成します。
#                  同一ティック内で更新済みの値を読んでしまう事故（ブロッキング代入の罠）を型で防ぎます。
@dataclass(frozen=True)
class CpuState:
    """
    CPUのレジスタ状態を保持する不変データクラス。
    """
    pc: int = 0x0000  # Program Counter
    sp: int = 0x0000  # Stack Pointer

    def replace(self, **changes) -> 'CpuState':
        return replace(self, **changes)
