"""Bit extraction, whitening and typed random values.

The shared camera session lives in :mod:`camnoise.rng.session`; it is not
imported here because it depends on :mod:`camnoise.capture`.
"""

from .bbs import BlumBlumShub, generate_blum_modulus
from .bounded import BoundedSampler, is_power_of_two
from .bus import BitBus, BroadcastChannel, Subscription
from .debias import DebiasMethod, Debiaser, ReferenceMode, raw_bit
from .digest import DigestRng, digest_bits
from .exposure import ExposureBounds, ExposureController, ExposureState, ParameterRange, initial_exposure
from .values import RandomValues, ValueKind, ValueStream, assemble, to_signed

__all__ = [
    "BitBus",
    "BlumBlumShub",
    "BoundedSampler",
    "BroadcastChannel",
    "DebiasMethod",
    "Debiaser",
    "DigestRng",
    "ExposureBounds",
    "ExposureController",
    "ExposureState",
    "ParameterRange",
    "RandomValues",
    "ReferenceMode",
    "Subscription",
    "ValueKind",
    "ValueStream",
    "assemble",
    "digest_bits",
    "generate_blum_modulus",
    "initial_exposure",
    "is_power_of_two",
    "raw_bit",
    "to_signed",
]
