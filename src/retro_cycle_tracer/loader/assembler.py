# retro_cycle_tracer/loader/assembler.py
"""
アセンブラの共通基盤。
ソース行の分解と、数値リテラル・シンボルの解決をアーキテクチャ固有のアセンブラに提供します。

受け付ける数値表現: `$C000`, `0xC000`, `%1010`, `0C0h`, `42`
"""
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from retro_cycle_tracer.common.types import AssembledBytes, SymbolMap

_LINE_PATTERN = re.compile(
    r"(?:(?P<label>[A-Za-z_.][\w.]*)\s*:)?\s*"
    r"(?:(?P<mnemonic>[A-Za-z.]\w*)(?:\s+(?P<operands>.*))?)?"
)

# 先頭から順に試す
_NUMBER_FORMATS = (
    (re.compile(r"\$([0-9A-Fa-f]+)"), 16),
    (re.compile(r"0[xX]([0-9A-Fa-f]+)"), 16),
    (re.compile(r"%([01]+)"), 2),
    (re.compile(r"([0-9][0-9A-Fa-f]*)[hH]"), 16),
    (re.compile(r"(-?[0-9]+)"), 10),
)

class BaseAssembler(ABC):
    @abstractmethod
    def assemble(self, lines: List[str]) -> Tuple[SymbolMap, AssembledBytes]:
        """
        ソースを2パスで処理し、シンボルマップと配置済みバイトの列を返します。
        """
        pass

    # @intent:responsibility 1行を (ラベル, ニーモニック, オペランド) に分解します。
    # @intent:post-condition ニーモニックは大文字。命令のない行はニーモニックとオペランドが None。
    def _parse_line(self, line: str) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        source = line.split(";", 1)[0].strip()
        match = _LINE_PATTERN.fullmatch(source)
        if match is None:
            raise ValueError(f"Cannot parse line: {line.strip()}")
        label, mnemonic = match.group("label"), match.group("mnemonic")
        if mnemonic is None:
            return label, None, None
        return label, mnemonic.upper(), (match.group("operands") or "").strip()

    # @intent:utility_function シンボル名または数値リテラルを整数に変換します。
    def _parse_val(self, text: str, symbol_map: SymbolMap) -> int:
        text = text.strip()
        if text in symbol_map:
            return symbol_map[text]
        for pattern, base in _NUMBER_FORMATS:
            match = pattern.fullmatch(text)
            if match:
                return int(match.group(1), base)
        raise ValueError(f"Undefined symbol or invalid value: {text}")
