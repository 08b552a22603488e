"""
Block pipelines and the Monte-Carlo BER loop.

A link object owns everything that is expensive to build or that carries
random state (encoder/decoder tables, quantizer, bit source, channel) and
is meant to be reused across Eb/No points. `run_ber` only resets the error
tally; the bit and noise streams keep running unless `reseed` is called.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union
import numpy as np

from channel import AWGNChannel
from convolutional import ConvolutionalCode, ConvolutionalEncoder, ViterbiDecoder
from metrics import ErrorRate
from quantizer import ScalarQuantizerEncoder, DEFAULT_LLR_BOUNDARIES
from receiver import demod_hard, demod_soft, llr_to_bits
from scrambler import Scrambler, SubframeCounter
from transmitter import BitSource, modulate_bits
from utils import (
    ConfigurationError,
    DemodType,
    Modulation,
    ebn0_to_snr_db,
    snr_db_to_noise_var,
)

log = logging.getLogger(__name__)

CODED_FRAME_SIZE = 2048
CHAIN_FRAME_SIZE = 2400


class Link:
    """Common state of a simulated link: bit source, channel and tally."""

    block_size = 0

    def __init__(self, seed=None):
        self.bit_source = BitSource()
        self.channel = AWGNChannel()
        self.tally = ErrorRate()
        self.noise_var = 0.0
        self.reseed(seed)

    def reseed(self, seed=None) -> None:
        """Restart the bit and noise streams from `seed`."""
        bit_seed, noise_seed = np.random.SeedSequence(seed).spawn(2)
        self.bit_source.reseed(bit_seed)
        self.channel.reseed(noise_seed)

    def reset_tally(self) -> None:
        self.tally.reset()

    def snr_db(self, ebno_db: float) -> float:
        raise NotImplementedError

    def configure(self, ebno_db: float) -> None:
        snr = self.snr_db(ebno_db)
        self.channel.snr_db = snr
        self.noise_var = snr_db_to_noise_var(snr)

    def transmit_block(self) -> Tuple[np.ndarray, np.ndarray]:
        """Send one block; return (transmitted bits, recovered bits)."""
        raise NotImplementedError


class CodedLink(Link):
    """
    Convolutional code -> QPSK -> AWGN -> LLR -> quantizer -> Viterbi.
    """

    block_size = CODED_FRAME_SIZE

    def __init__(
        self,
        seed=None,
        code: ConvolutionalCode = ConvolutionalCode(),
        boundary_points=DEFAULT_LLR_BOUNDARIES,
        soft_bits: int = 4,
        block_size: int = CODED_FRAME_SIZE,
    ):
        self.block_size = block_size
        self.modulation = Modulation.QPSK
        self.code = code
        self.encoder = ConvolutionalEncoder(code)
        self.decoder = ViterbiDecoder(code, soft_bits=soft_bits)
        self.quantizer = ScalarQuantizerEncoder(boundary_points)
        if self.quantizer.n_levels != self.decoder.n_levels:
            raise ConfigurationError(
                f"quantizer has {self.quantizer.n_levels} levels, "
                f"decoder expects {self.decoder.n_levels}"
            )
        coded_len = code.n_outputs * (block_size + code.tail_length)
        if coded_len % self.modulation.bps != 0:
            raise ConfigurationError(
                f"{coded_len} coded bits do not fill whole {self.modulation.value} symbols"
            )
        super().__init__(seed)
        log.info(
            "CodedLink(K=%d, gens=%s, block=%d, levels=%d)",
            code.constraint_length,
            [oct(g) for g in code.generators],
            block_size,
            self.decoder.n_levels,
        )

    def snr_db(self, ebno_db: float) -> float:
        return ebn0_to_snr_db(ebno_db, self.modulation.bps, self.code.rate)

    def transmit_block(self) -> Tuple[np.ndarray, np.ndarray]:
        tx_bits = self.bit_source.generate(self.block_size)
        coded = self.encoder.encode(tx_bits)
        tx = modulate_bits(coded, self.modulation)
        rx = self.channel.transmit(tx)
        llr = demod_soft(rx, self.modulation, self.noise_var)
        # decoder metric: larger index = more evidence for 1
        index = self.quantizer.quantize(-llr)
        rx_bits = self.decoder.decode(index)
        return tx_bits, rx_bits[:self.block_size]


class UncodedLink(Link):
    """
    Scrambler -> QPSK/16QAM/64QAM -> AWGN -> hard or soft demod -> descrambler.
    """

    block_size = CHAIN_FRAME_SIZE

    def __init__(
        self,
        modulation: Union[str, Modulation] = Modulation.QPSK,
        demod_type: Union[str, DemodType] = DemodType.HARD,
        seed=None,
        block_size: int = CHAIN_FRAME_SIZE,
    ):
        self.modulation = Modulation.parse(modulation)
        self.demod_type = DemodType.parse(demod_type)
        if block_size % self.modulation.bps != 0:
            raise ConfigurationError(
                f"block size {block_size} is not a multiple of {self.modulation.bps}"
            )
        self.block_size = block_size
        self.scrambler = Scrambler()
        self.subframe = SubframeCounter()
        if self.demod_type is DemodType.HARD:
            self._detect = self._detect_hard
        else:
            self._detect = self._detect_soft
        super().__init__(seed)
        log.info(
            "UncodedLink(%s, %s, block=%d)",
            self.modulation.value, self.demod_type.value, block_size,
        )

    def snr_db(self, ebno_db: float) -> float:
        return ebn0_to_snr_db(ebno_db, self.modulation.bps)

    def configure(self, ebno_db: float) -> None:
        super().configure(ebno_db)
        self.subframe.reset()

    def _detect_hard(self, rx: np.ndarray, subframe: int) -> np.ndarray:
        bits = demod_hard(rx, self.modulation)
        return self.scrambler.descramble(bits, subframe)

    def _detect_soft(self, rx: np.ndarray, subframe: int) -> np.ndarray:
        llr = demod_soft(rx, self.modulation, self.noise_var)
        llr = self.scrambler.descramble(llr, subframe, soft=True)
        return llr_to_bits(llr)

    def transmit_block(self) -> Tuple[np.ndarray, np.ndarray]:
        subframe = self.subframe.value
        tx_bits = self.bit_source.generate(self.block_size)
        tx = modulate_bits(self.scrambler.scramble(tx_bits, subframe), self.modulation)
        rx = self.channel.transmit(tx)
        rx_bits = self._detect(rx, subframe)
        self.subframe.advance()
        return tx_bits, rx_bits


@dataclass
class BerResult:
    ber: float
    bits: int
    errors: int
    blocks: int
    stop_reason: str

    def __iter__(self):
        # unpacks as (ber, bits)
        return iter((self.ber, self.bits))


def _check_budget(name: str, value) -> None:
    if value is None or math.isnan(value) or value < 0:
        raise ConfigurationError(f"{name} must be a non-negative number, got {value!r}")


def run_ber(link: Link, ebno_db: float, max_errs, max_bits) -> BerResult:
    """
    Send blocks over `link` until `max_errs` errors or `max_bits` bits.

    The loop has no cap of its own: with an error budget the link never
    reaches and an unbounded bit budget it does not return.
    """
    _check_budget("max_errs", max_errs)
    _check_budget("max_bits", max_bits)
    link.reset_tally()
    link.configure(ebno_db)

    tally = link.tally
    blocks = 0
    while tally.errors < max_errs and tally.bits < max_bits:
        tx_bits, rx_bits = link.transmit_block()
        tally.update(tx_bits, rx_bits)
        blocks += 1
        log.debug("block %d: errors=%d bits=%d", blocks, tally.errors, tally.bits)

    reason = "errors" if tally.errors >= max_errs else "bits"
    result = BerResult(tally.ber, tally.bits, tally.errors, blocks, reason)
    log.info(
        "Eb/N0=%.2f dB: BER=%.3e (%d/%d bits, stop on %s)",
        ebno_db, result.ber, result.errors, result.bits, reason,
    )
    return result


def coded_ber(
    ebno_db: float,
    max_errs,
    max_bits,
    link: Optional[CodedLink] = None,
) -> Tuple[float, int]:
    """
    BER of the rate-1/2 K=7 coded QPSK link with soft Viterbi decoding.

    Pass the same `link` on every call of a sweep to keep one noise stream
    and build the trellis tables once.
    """
    if link is None:
        link = CodedLink()
    result = run_ber(link, ebno_db, max_errs, max_bits)
    return result.ber, result.bits


@dataclass
class ChainConfig:
    ebno_db: float
    max_errs: float
    max_bits: float
    mod_scheme: Union[str, Modulation] = Modulation.QPSK
    demod_type: Union[str, DemodType] = DemodType.HARD

    def __post_init__(self):
        self.mod_scheme = Modulation.parse(self.mod_scheme)
        self.demod_type = DemodType.parse(self.demod_type)
        _check_budget("max_errs", self.max_errs)
        _check_budget("max_bits", self.max_bits)

    @classmethod
    def from_mapping(cls, args: Mapping[str, Any]) -> "ChainConfig":
        """Build from a record with keys EbNo, maxErrs, maxBits, modScheme, demodType."""
        try:
            return cls(
                ebno_db=args["EbNo"],
                max_errs=args["maxErrs"],
                max_bits=args["maxBits"],
                mod_scheme=args.get("modScheme", args.get("modulationScheme", Modulation.QPSK)),
                demod_type=args.get("demodType", DemodType.HARD),
            )
        except KeyError as e:
            raise ConfigurationError(f"missing configuration field {e.args[0]!r}") from None


def chain_ber(
    config: Union[ChainConfig, Mapping[str, Any]],
    link: Optional[UncodedLink] = None,
) -> Tuple[float, int]:
    """
    BER of the scrambled, uncoded link described by `config`.
    """
    if not isinstance(config, ChainConfig):
        config = ChainConfig.from_mapping(config)
    if link is None:
        link = UncodedLink(config.mod_scheme, config.demod_type)
    elif (link.modulation, link.demod_type) != (config.mod_scheme, config.demod_type):
        raise ConfigurationError(
            f"link is {link.modulation.value}/{link.demod_type.value}, "
            f"config asks for {config.mod_scheme.value}/{config.demod_type.value}"
        )
    result = run_ber(link, config.ebno_db, config.max_errs, config.max_bits)
    return result.ber, result.bits
