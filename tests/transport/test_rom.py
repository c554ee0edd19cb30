import unittest
from retro_cycle_tracer.transport.bus import ROM

class TestROM(unittest.TestCase):
    def test_rom_read(self):
        rom = ROM(1024)
        rom.load_data(0, 0xAA)
        self.assertEqual(rom.read(0), 0xAA)

    def test_rom_write_ignored(self):
        rom = ROM(1024)
        rom.load_data(0, 0xAA)

        # Write is ignored with a warning
        with self.assertLogs("retro_cycle_tracer.transport.bus", level="WARNING"):
            rom.write(0, 0xBB)

        self.assertEqual(rom.read(0), 0xAA)

    def test_rom_write_out_of_bounds(self):
        rom = ROM(16)
        with self.assertRaises(IndexError):
            rom.write(16, 0x00)

    def test_rom_size(self):
        self.assertEqual(ROM(0x4000).get_size(), 0x4000)

if __name__ == '__main__':
    unittest.main()
