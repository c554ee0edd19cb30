# retro_cycle_tracer/common/types.py
"""
レイヤー間で受け渡す小さな値型。
アセンブラの出力、逆アセンブル結果、レジスタ表示のレイアウトをここに集めています。
"""
from typing import Dict, List, NamedTuple

# @intent:data_structure ラベル名からアドレスへの対応表。
SymbolMap = Dict[str, int]

# @intent:data_structure アセンブラが出力する1バイト分の配置情報。
class AssembledByte(NamedTuple):
    address: int
    value: int

AssembledBytes = List[AssembledByte]

# @intent:data_structure 逆アセンブルした1命令。hex_bytes は "A9 01" のような空白区切り。
class DisassemblyLine(NamedTuple):
    address: int
    hex_bytes: str
    text: str

class RegisterInfo(NamedTuple):
    name: str
    width: int  # 8 or 16

# @intent:data_structure 表示上まとめて扱うレジスタの組。
class RegisterLayoutInfo(NamedTuple):
    group_name: str
    registers: List[RegisterInfo]
