"""FIT CRC-16.

Nibble-at-a-time table update as used by FIT devices (reflected 0x8005
polynomial, zero initial value). Keep this exact algorithm; devices compare
against it bit for bit.
"""

CRC_TABLE = (
    0x0000, 0xCC01, 0xD801, 0x1400, 0xF001, 0x3C00, 0x2800, 0xE401,
    0xA001, 0x6C00, 0x7800, 0xB401, 0x5000, 0x9C01, 0x8801, 0x4400,
)


def crc16_update(crc: int, byte: int) -> int:
    # lower nibble
    tmp = CRC_TABLE[crc & 0xF]
    crc = (crc >> 4) & 0x0FFF
    crc = crc ^ tmp ^ CRC_TABLE[byte & 0xF]

    # upper nibble
    tmp = CRC_TABLE[crc & 0xF]
    crc = (crc >> 4) & 0x0FFF
    return crc ^ tmp ^ CRC_TABLE[(byte >> 4) & 0xF]


def crc16(data: bytes, crc: int = 0) -> int:
    for byte in data:
        crc = crc16_update(crc, byte)
    return crc


def _gf2_times(matrix: list[int], vector: int) -> int:
    total = 0
    i = 0
    while vector:
        if vector & 1:
            total ^= matrix[i]
        vector >>= 1
        i += 1
    return total


def _gf2_square(matrix: list[int]) -> list[int]:
    return [_gf2_times(matrix, column) for column in matrix]


def crc16_shift(crc: int, length: int) -> int:
    """Advance ``crc`` as if ``length`` zero bytes had been fed to it.

    Feeding a zero byte is linear in the CRC state, so the operator is squared
    repeatedly instead of looping over every byte.
    """
    operator = [crc16_update(1 << bit, 0) for bit in range(16)]
    while length:
        if length & 1:
            crc = _gf2_times(operator, crc)
        length >>= 1
        if length:
            operator = _gf2_square(operator)
    return crc
