# retro_cycle_tracer/transport/peripherals.py
"""
周辺機器レジスタウィンドウ。

ボタン入力（読み出し専用）、汎用出力ポート（書き込み専用）、
トーン選択レジスタ（書き込み専用）をバス上の1つのデバイスとして公開します。
物理的な表示・発音・チャタリング除去は扱わず、レジスタの読み書き契約のみをモデル化します。
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from retro_cycle_tracer.transport.bus import Device

logger = logging.getLogger(__name__)

TONE_SILENCE = 0
TONE_LOWEST = 60
TONE_HIGHEST = 96

DEFAULT_PORT_HISTORY = 1024

# @intent:data_structure ウィンドウ内のレジスタオフセット。
@dataclass(frozen=True)
class PeripheralLayout:
    buttons: int = 0x00
    port0: int = 0x08
    tone: int = 0x0A

# @intent:responsibility 周辺機器レジスタをバスデバイスとして提供します。
class Peripherals(Device):
    """
    周辺機器レジスタのウィンドウ。
    書き込み専用レジスタの読み出し、および未定義オフセットの読み出しは 0x00 を返します。
    """
    def __init__(self, size: int = 0x100, layout: Optional[PeripheralLayout] = None,
                 history_limit: int = DEFAULT_PORT_HISTORY):
        if not isinstance(size, int) or size <= 0:
            raise ValueError("Peripheral window size must be a positive integer.")
        if history_limit <= 0:
            raise ValueError("history_limit must be a positive integer.")
        self._size = size
        self._layout = layout or PeripheralLayout()
        for name in ("buttons", "port0", "tone"):
            offset = getattr(self._layout, name)
            if not 0 <= offset < size:
                raise ValueError(f"Peripheral register '{name}' offset {offset:#04x} outside window of size {size}.")
        self._buttons = 0x00
        self._port0 = 0x00
        self._tone = TONE_SILENCE
        # 直近 history_limit 回分の書き込みのみ保持する
        self._port0_history: Deque[int] = deque(maxlen=history_limit)

    def get_size(self) -> int:
        return self._size

    @property
    def layout(self) -> PeripheralLayout:
        return self._layout

    def read(self, address: int) -> int:
        if not 0 <= address < self._size:
            raise IndexError(f"Address {address} out of bounds for peripherals of size {self._size}.")
        if address == self._layout.buttons:
            return self._buttons
        return 0x00

    def write(self, address: int, data: int) -> None:
        if not 0 <= address < self._size:
            raise IndexError(f"Address {address} out of bounds for peripherals of size {self._size}.")
        if address == self._layout.port0:
            self._port0 = data & 0xFF
            self._port0_history.append(self._port0)
        elif address == self._layout.tone:
            self._tone = data & 0xFF
            if not self.is_valid_tone(self._tone):
                logger.debug("Tone register set to out-of-range value %d", self._tone)
        elif address == self._layout.buttons:
            # ボタンは読み出し専用
            logger.debug("Ignored write of $%02X to read-only button register", data & 0xFF)

    # --- ホスト側（テストハーネス・UI）から操作する入出力 ---

    # @intent:responsibility ボタンの押下状態（ビットマスク）を設定します。
    def set_buttons(self, mask: int) -> None:
        self._buttons = mask & 0xFF

    def press(self, button: int) -> None:
        self._buttons |= (1 << button) & 0xFF

    def release(self, button: int) -> None:
        self._buttons &= ~(1 << button) & 0xFF

    @property
    def port0(self) -> int:
        return self._port0

    # @intent:responsibility 出力ポートへの直近の書き込み履歴を古い順に返します（点滅パターンの検証用）。
    def get_port0_history(self) -> List[int]:
        return list(self._port0_history)

    @property
    def tone(self) -> int:
        return self._tone

    @staticmethod
    def is_valid_tone(value: int) -> bool:
        return value == TONE_SILENCE or TONE_LOWEST <= value <= TONE_HIGHEST

    # @intent:responsibility トーンレジスタの値（MIDIノート番号）を周波数に変換します。無音または範囲外はNone。
    def tone_frequency(self) -> Optional[float]:
        if self._tone == TONE_SILENCE or not self.is_valid_tone(self._tone):
            return None
        return 440.0 * 2.0 ** ((self._tone - 69) / 12.0)
