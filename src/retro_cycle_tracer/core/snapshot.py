# retro_cycle_tracer/core/snapshot.py
"""
実行状態の不変スナップショット

このモジュールは、1ティック終了時点のCPU状態とバスアクセスを記録した不変のデータ構造を定義します。
バススヌープによる検証や、デバッガの履歴記録に用いる責務を負います。
"""
from dataclasses import dataclass, field
from typing import List, Optional

from retro_cycle_tracer.core.state import CpuState
from retro_cycle_tracer.transport.bus import BusAccessType, BusAccess

# @intent:responsibility 実行に関するメタデータを記録します。
@dataclass(frozen=True)
class Metadata:
    """
    累計ティック数、累計命令数、現在の状態名などのメタデータ。
    """
    tick_count: int
    instruction_count: int = 0
    state_name: str = ""
    symbol_info: Optional[str] = None # 例: "main_loop: LDA #$00"

# @intent:responsibility ある一時点におけるCPUとバスの完全な状態を不変に記録します。
@dataclass(frozen=True)
class Snapshot:
    """
    あるティックの終わりにおける、CPU状態とそのティックで発生したバスアクセス。
    CpuStateは不変なので、後続のティックで内容が変化することはありません。
    """
    state: CpuState
    metadata: Metadata
    bus_activity: List[BusAccess] = field(default_factory=list)

    # @intent:responsibility このティックで発生した書き込みのみを返します。
    def writes(self) -> List[BusAccess]:
        return [access for access in self.bus_activity if access.access_type == BusAccessType.WRITE]
