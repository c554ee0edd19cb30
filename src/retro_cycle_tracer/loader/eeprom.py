# retro_cycle_tracer/loader/eeprom.py
"""
シリアルEEPROMからRAMへのブートストラップ転送。

`SerialEeprom` は外部コラボレータ（ビット単位のプロトコルは扱わず、1バイト単位の要求/応答のみ）、
`EepromLoader` はCPU実行前にバスを占有してバイト列をRAMへコピーする状態機械です。
EEPROMローダーは既定の構成では無効で、起動時は固定の初期PCへ直接ジャンプします。
"""
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from retro_cycle_tracer.transport.bus import BusRequest, MemoryBus

logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_LENGTH = 256

# @intent:data_structure EEPROMの応答。次のティックで参照される。
@dataclass(frozen=True)
class EepromResponse:
    data_out: int = 0x00
    ready: bool = False

# @intent:responsibility 1バイト単位で読み出せるシリアルEEPROMのモデル。
class SerialEeprom:
    """
    strobe を受けてから `latency` ティック後に1ティックだけ ready を立て、data_out にバイトを出します。
    イメージの範囲外は消去状態 (0xFF) を返します。
    """
    def __init__(self, image: bytes, latency: int = 2):
        if latency < 1:
            raise ValueError("EEPROM latency must be at least one tick.")
        self._image = bytes(image)
        self._latency = latency
        self._countdown = 0
        self._pending_address: Optional[int] = None
        self._response = EepromResponse()

    @property
    def response(self) -> EepromResponse:
        return self._response

    def reset(self) -> None:
        self._countdown = 0
        self._pending_address = None
        self._response = EepromResponse()

    def _byte_at(self, address: int) -> int:
        if 0 <= address < len(self._image):
            return self._image[address]
        return 0xFF

    def clock(self, address: int, strobe: bool) -> EepromResponse:
        if strobe and self._pending_address is None:
            self._pending_address = address & 0xFFFF
            self._countdown = self._latency
        elif self._pending_address is not None:
            self._countdown -= 1
            if self._countdown <= 0:
                self._response = EepromResponse(data_out=self._byte_at(self._pending_address), ready=True)
                self._pending_address = None
                return self._response
        self._response = EepromResponse(data_out=self._response.data_out, ready=False)
        return self._response

# @intent:responsibility ローダーの状態。
class LoaderStateId(Enum):
    START = "START"
    READ = "READ"
    WAIT = "WAIT"
    WRITE = "WRITE"
    DONE = "DONE"
    FINISHED = "FINISHED"

@dataclass(frozen=True)
class LoaderState:
    state: LoaderStateId = LoaderStateId.START
    count: int = 0
    byte: int = 0x00
    eeprom_address: int = 0x0000
    strobe: bool = False
    address: int = 0x0000
    data_in: int = 0x00
    write_enable: bool = False

# @intent:responsibility EEPROMからRAMへ `length` バイトを転送するブートストラップ状態機械。
# @intent:rationale エンジンと同様に、直前ティックの確定状態からのみ次状態を計算する。
class EepromLoader:
    """
    START → READ → WAIT → WRITE → DONE を、READ..DONE を繰り返しながら `length` バイト分実行し、
    FINISHED で停止します。動作中はバスの唯一のリクエスト元です。
    """
    def __init__(self, eeprom: SerialEeprom, load_address: int, length: int = DEFAULT_TRANSFER_LENGTH,
                 source_offset: int = 0):
        if length <= 0:
            raise ValueError("Transfer length must be a positive integer.")
        self._eeprom = eeprom
        self._load_address = load_address & 0xFFFF
        self._length = length
        self._source_offset = source_offset
        self._state = LoaderState()

    @property
    def state(self) -> LoaderState:
        return self._state

    @property
    def finished(self) -> bool:
        return self._state.state == LoaderStateId.FINISHED

    def reset(self) -> None:
        self._state = LoaderState()
        self._eeprom.reset()

    def _next(self, s: LoaderState, response: EepromResponse) -> LoaderState:
        if s.state == LoaderStateId.START:
            return replace(s, count=0, state=LoaderStateId.READ)
        if s.state == LoaderStateId.READ:
            return replace(s, eeprom_address=self._source_offset + s.count, strobe=True, state=LoaderStateId.WAIT)
        if s.state == LoaderStateId.WAIT:
            if response.ready:
                return replace(s, strobe=False, byte=response.data_out, state=LoaderStateId.WRITE)
            return replace(s, strobe=False)
        if s.state == LoaderStateId.WRITE:
            return replace(
                s,
                address=(self._load_address + s.count) & 0xFFFF,
                data_in=s.byte,
                write_enable=True,
                state=LoaderStateId.DONE,
            )
        if s.state == LoaderStateId.DONE:
            count = s.count + 1
            next_state = LoaderStateId.FINISHED if count >= self._length else LoaderStateId.READ
            return replace(s, write_enable=False, count=count, state=next_state)
        return s

    # @intent:responsibility 1ティック進め、EEPROMをクロックし、バスへのリクエストを返す。
    def tick(self) -> BusRequest:
        self._state = self._next(self._state, self._eeprom.response)
        self._eeprom.clock(self._state.eeprom_address, self._state.strobe)
        if self.finished:
            logger.info("EEPROM bootstrap copied %d bytes to $%04X", self._length, self._load_address)
        return BusRequest(address=self._state.address, data_in=self._state.data_in,
                          write_enable=self._state.write_enable)

    # @intent:responsibility テストやホスト用に、転送完了までバスを駆動する。
    def run(self, bus: MemoryBus, max_ticks: int = 100000) -> int:
        ticks = 0
        while not self.finished:
            if ticks >= max_ticks:
                raise RuntimeError(f"EEPROM bootstrap did not finish within {max_ticks} ticks.")
            bus.clock(self.tick())
            ticks += 1
        return ticks
