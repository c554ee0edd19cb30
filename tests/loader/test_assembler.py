import unittest
from retro_cycle_tracer.arch.mos6502.assembler import Mos6502Assembler

class TestAssemblerParsing(unittest.TestCase):
    """
    BaseAssembler の行分解と数値解決の検証。
    """
    def setUp(self):
        self.assembler = Mos6502Assembler()

    def test_parse_line(self):
        self.assertEqual(self.assembler._parse_line("  loop:  lda #$10 ; comment"), ("loop", "LDA", "#$10"))
        self.assertEqual(self.assembler._parse_line("label:"), ("label", None, None))
        self.assertEqual(self.assembler._parse_line("   ; only a comment"), (None, None, None))
        self.assertEqual(self.assembler._parse_line("nop"), (None, "NOP", ""))

    def test_parse_values(self):
        symbols = {"start": 0xC000}
        self.assertEqual(self.assembler._parse_val("$FF", symbols), 0xFF)
        self.assertEqual(self.assembler._parse_val("0x1234", symbols), 0x1234)
        self.assertEqual(self.assembler._parse_val("%1010", symbols), 0x0A)
        self.assertEqual(self.assembler._parse_val("0C0h", symbols), 0xC0)
        self.assertEqual(self.assembler._parse_val("42", symbols), 42)
        self.assertEqual(self.assembler._parse_val("start", symbols), 0xC000)

    def test_undefined_symbol(self):
        with self.assertRaisesRegex(ValueError, "Undefined symbol or invalid value: missing"):
            self.assembler._parse_val("missing", {})

    def test_unparsable_line(self):
        with self.assertRaisesRegex(ValueError, "Cannot parse line"):
            self.assembler._parse_line("1abc: nop")

if __name__ == '__main__':
    unittest.main()
