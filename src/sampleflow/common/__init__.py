from .philox import PhiloxRandom, draw, draw_uint32, philox4x32_10, uint32_to_float

__all__ = [
    "PhiloxRandom",
    "draw",
    "draw_uint32",
    "philox4x32_10",
    "uint32_to_float",
]
