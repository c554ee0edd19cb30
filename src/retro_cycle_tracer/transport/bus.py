# retro_cycle_tracer/transport/bus.py
"""
Transport Layer (メモリバス)

16bitのアドレス空間をRAM、ROM、周辺機器ウィンドウに振り分けるバスを提供します。

エンジンからのアクセスは `clock()` のみです。
1ティックに1回、アドレス・書き込みデータ・ライトイネーブルの組をサンプリングし、
読み出した値 `data_out` はその次のティックで初めて参照されます（1ティックのレイテンシ）。
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

ADDRESS_MASK = 0xFFFF

# @intent:responsibility バスアクセスの方向。
class BusAccessType(Enum):
    READ = "READ"
    WRITE = "WRITE"

# @intent:responsibility バス上で観測された1回のアクセス。Snapshot に含まれ、バススヌープに使われます。
@dataclass(frozen=True)
class BusAccess:
    address: int
    data: int # 8bit value
    access_type: BusAccessType

# @intent:responsibility 1ティック分のバスリクエストを表します。
@dataclass(frozen=True)
class BusRequest:
    """
    エンジン（またはブートストラップローダー）がティックの終わりに駆動するバス信号。
    """
    address: int = 0x0000
    data_in: int = 0x00
    write_enable: bool = False

# @intent:responsibility バスに接続されるデバイスのインターフェース。アドレスは常にデバイス内オフセット。
class Device(ABC):
    @abstractmethod
    def read(self, address: int) -> int:
        """
        オフセット `address` の8bit値を返します。
        """
        pass

    @abstractmethod
    def write(self, address: int, data: int) -> None:
        """
        オフセット `address` に8bit値を書き込みます。書き込みを無視するデバイスもあります。
        """
        pass

    # @intent:responsibility デバイスが占めるバイト数。Noneならマップ登録時のサイズ検査を省略します。
    def get_size(self) -> Optional[int]:
        return None

# @intent:responsibility バイト配列をそのまま公開する読み書き可能メモリ。
class RAM(Device):
    # @intent:pre-condition sizeは正の整数である必要があります。
    def __init__(self, size: int):
        if not isinstance(size, int) or size <= 0:
            raise ValueError("RAM size must be a positive integer.")
        self._size = size
        self._cells = bytearray(size)

    def _check_offset(self, address: int) -> None:
        if not 0 <= address < self._size:
            raise IndexError(f"Address {address} out of bounds for {type(self).__name__} of size {self._size}.")

    def read(self, address: int) -> int:
        self._check_offset(address)
        return self._cells[address]

    def write(self, address: int, data: int) -> None:
        RAM.load_data(self, address, data)

    # @intent:responsibility イメージ配置用の書き込み。ROMでもこの経路だけはセルを書き換えます。
    def load_data(self, address: int, data: int) -> None:
        self._check_offset(address)
        if not 0 <= data <= 0xFF:
            raise ValueError(f"Data {data} is not an 8-bit value.")
        self._cells[address] = data

    def get_size(self) -> int:
        return self._size

# @intent:responsibility プログラムを格納する読み出し専用メモリ。
class ROM(RAM):
    """
    クロック経路やホストからの書き込みはセルを変更せず、警告を記録するだけです。
    イメージは load_data（MemoryBus.load）で配置します。
    """
    def write(self, address: int, data: int) -> None:
        self._check_offset(address)
        logger.warning("Ignored write of $%02X to ROM offset $%04X", data & 0xFF, address)

# @intent:data_structure アドレス範囲とデバイスの対応。
class Mapping(NamedTuple):
    start: int
    end: int
    device: Device

    def contains(self, address: int) -> bool:
        return self.start <= address <= self.end

# @intent:responsibility アドレス空間の管理と、デバイスへのアクセスの振り分けを行うメモリバス。
# @intent:rationale 全アクセスを記録し、ティックごとに Snapshot へ渡すことでバスの観測を可能にします。
class MemoryBus:
    """
    `clock()` はクロックエッジでのリクエストのサンプリング、
    `read()` / `write()` / `peek()` / `load()` はテストやローダーなどホスト側からの直接アクセスです。
    """
    def __init__(self):
        self._mappings: List[Mapping] = []
        self._activity: List[BusAccess] = []
        self._data_out: int = 0x00

    def _record(self, address: int, data: int, access_type: BusAccessType) -> None:
        self._activity.append(BusAccess(address=address, data=data, access_type=access_type))

    # @intent:responsibility これまでに記録したアクセスを返し、記録を空にします。
    def get_and_clear_activity_log(self) -> List[BusAccess]:
        activity, self._activity = self._activity, []
        return activity

    # @intent:responsibility `start_address`〜`end_address`（両端を含む）にデバイスを割り当てます。
    # @intent:rationale 範囲の重複は検査しません。先に登録した範囲が優先されます。
    def register_device(self, start_address: int, end_address: int, device: Device) -> None:
        if not (0 <= start_address <= end_address <= ADDRESS_MASK):
            raise ValueError("Invalid address range: start_address must be <= end_address and within 0x0000-0xFFFF.")
        if not isinstance(device, Device):
            raise TypeError("Device must be an instance of a class derived from Device.")

        span = end_address - start_address + 1
        size = device.get_size()
        if size is not None and size != span:
            raise ValueError(
                f"Registered {type(device).__name__} device size ({size} bytes) does not match "
                f"the specified address range size ({span} bytes)."
            )
        self._mappings.append(Mapping(start_address, end_address, device))

    def _lookup(self, address: int) -> Optional[Tuple[Device, int]]:
        for mapping in self._mappings:
            if mapping.contains(address):
                return mapping.device, address - mapping.start
        return None

    def is_mapped(self, address: int) -> bool:
        return self._lookup(address) is not None

    # @intent:post-condition どのデバイスにも割り当てられていないアドレスではIndexErrorを送出します。
    def _resolve(self, address: int) -> Tuple[Device, int]:
        found = self._lookup(address)
        if found is None:
            raise IndexError(f"Address {address:#06x} not mapped to any device.")
        return found

    # @intent:responsibility 前ティックのリクエストで読み出された値。
    @property
    def data_out(self) -> int:
        return self._data_out

    # @intent:responsibility クロックエッジで1ティック分のリクエストをサンプリングします。
    # @intent:post-condition 書き込みならデバイスを更新し、読み出しなら次ティック用の data_out を更新します。
    def clock(self, request: BusRequest) -> int:
        """
        次のティックで見える data_out を返します。
        割り当てのないアドレスは読み出しで 0x00 を返し、書き込みは捨てられます（バスエラーはありません）。
        """
        address = request.address & ADDRESS_MASK
        found = self._lookup(address)

        if request.write_enable:
            data = request.data_in & 0xFF
            if found is None:
                logger.debug("Write of $%02X to unmapped address $%04X dropped", data, address)
            else:
                found[0].write(found[1], data)
            self._record(address, data, BusAccessType.WRITE)
            return self._data_out

        self._data_out = found[0].read(found[1]) if found is not None else 0x00
        self._record(address, self._data_out, BusAccessType.READ)
        return self._data_out

    # @intent:responsibility ホストからの読み出し。アクセスは記録されます。
    def read(self, address: int) -> int:
        device, offset = self._resolve(address)
        data = device.read(offset)
        self._record(address, data, BusAccessType.READ)
        return data

    # @intent:responsibility 記録を残さない読み出し。デバッガや逆アセンブラ用。
    def peek(self, address: int) -> int:
        device, offset = self._resolve(address)
        return device.read(offset)

    # @intent:responsibility ホストからの書き込み。ROMはデバイス側で書き込みを無視します。
    def write(self, address: int, data: int) -> None:
        device, offset = self._resolve(address)
        device.write(offset, data)
        self._record(address, data, BusAccessType.WRITE)

    # @intent:responsibility イメージ配置用のバックドア。ROMにも書き込め、アクセスは記録されません。
    def load(self, address: int, data: int) -> None:
        """
        load_data を持たないデバイス（周辺機器など）には通常の write を行います。
        """
        device, offset = self._resolve(address)
        if isinstance(device, RAM):
            device.load_data(offset, data)
        else:
            device.write(offset, data)
