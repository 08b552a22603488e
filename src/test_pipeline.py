import math
import matplotlib
matplotlib.use("Agg")
import numpy as np
import pytest

from main import sweep_chain, sweep_coded
from metrics import bit_error_rate, theoretical_ber_awgn
from pipeline import (
    CHAIN_FRAME_SIZE,
    CODED_FRAME_SIZE,
    ChainConfig,
    CodedLink,
    UncodedLink,
    chain_ber,
    coded_ber,
    run_ber,
)
from plots import plot_ber_curves, plot_constellation
from receiver import demod_soft
from transmitter import modulate_bits
from utils import ConfigurationError, DemodType, Modulation


# -------------------------------------------------------------------------
# Stopping rule
# -------------------------------------------------------------------------

@pytest.mark.parametrize("max_errs, max_bits", [(0, 10_000), (10, 0), (0, 0)])
def test_zero_budget_returns_immediately(max_errs, max_bits):
    res = run_ber(UncodedLink(seed=1), 0, max_errs, max_bits)
    assert res.bits == 0
    assert res.blocks == 0
    assert math.isnan(res.ber)


def test_negative_budget_is_rejected():
    with pytest.raises(ConfigurationError):
        run_ber(UncodedLink(seed=1), 0, -1, 100)


def test_noiseless_coded_link_runs_to_bit_budget():
    res = run_ber(CodedLink(seed=2), math.inf, 5, 3 * CODED_FRAME_SIZE)
    assert res.bits == 3 * CODED_FRAME_SIZE
    assert res.errors == 0
    assert res.ber == 0.0
    assert res.stop_reason == "bits"


@pytest.mark.parametrize("mod", ["QPSK", "16QAM", "64QAM"])
@pytest.mark.parametrize("demod_type", ["hard", "soft"])
def test_noiseless_uncoded_link_is_error_free(mod, demod_type):
    ber, bits = chain_ber(ChainConfig(math.inf, 1, 2 * CHAIN_FRAME_SIZE, mod, demod_type))
    assert (ber, bits) == (0.0, 2 * CHAIN_FRAME_SIZE)


def test_bit_budget_rounds_up_to_whole_blocks():
    res = run_ber(UncodedLink(seed=3), 30, 1, 5000)
    assert res.bits == 3 * CHAIN_FRAME_SIZE
    assert res.blocks == 3


def test_error_budget_stops_loop():
    res = run_ber(UncodedLink("64QAM", "hard", seed=4), 0, 50, 10**9)
    assert res.errors >= 50
    assert res.stop_reason == "errors"
    assert res.bits == res.blocks * CHAIN_FRAME_SIZE

# -------------------------------------------------------------------------
# Reproducibility and persistent state
# -------------------------------------------------------------------------

def test_coded_concrete_scenario_is_reproducible():
    first = coded_ber(0, 100, 1e6, link=CodedLink(seed=2024))
    second = coded_ber(0, 100, 1e6, link=CodedLink(seed=2024))
    assert first == second
    ber, bits = first
    assert bits % CODED_FRAME_SIZE == 0
    assert 0 < ber < 0.5
    assert round(ber * bits) >= 100


def test_tally_resets_but_noise_stream_continues():
    link = UncodedLink("QPSK", "hard", seed=5)
    first = run_ber(link, 2, 10**9, 4 * CHAIN_FRAME_SIZE)
    second = run_ber(link, 2, 10**9, 4 * CHAIN_FRAME_SIZE)
    # each run starts from an empty tally
    assert first.bits == second.bits == 4 * CHAIN_FRAME_SIZE

    # replay: the second run continued the streams where the first stopped
    replay = UncodedLink("QPSK", "hard", seed=5)
    assert run_ber(replay, 2, 10**9, 4 * CHAIN_FRAME_SIZE) == first
    replay.configure(2)
    errors = 0
    for _ in range(4):
        tx_bits, rx_bits = replay.transmit_block()
        errors += int(np.count_nonzero(tx_bits != rx_bits))
    assert errors == second.errors

    link.reseed(5)
    assert run_ber(link, 2, 10**9, 4 * CHAIN_FRAME_SIZE) == first


def test_reset_tally():
    link = CodedLink(seed=6)
    link.configure(1)
    link.tally.update(*link.transmit_block())
    assert link.tally.bits == CODED_FRAME_SIZE
    link.reset_tally()
    assert (link.tally.errors, link.tally.bits) == (0, 0)


def test_subframe_index_restarts_each_run():
    link = UncodedLink(seed=7)
    run_ber(link, 10, 10**9, 3 * CHAIN_FRAME_SIZE)
    assert link.subframe.value == 6
    link.configure(10)
    assert link.subframe.value == 0

# -------------------------------------------------------------------------
# BER behaviour
# -------------------------------------------------------------------------

def test_ber_decreases_with_ebno():
    link = UncodedLink("QPSK", "hard", seed=8)
    bers = [run_ber(link, ebno, 10**9, 20 * CHAIN_FRAME_SIZE).ber for ebno in (0, 4, 8)]
    assert bers[0] > bers[1] > bers[2]


def test_uncoded_qpsk_matches_theory():
    ber, _ = chain_ber({"EbNo": 2, "maxErrs": 10**9, "maxBits": 50 * CHAIN_FRAME_SIZE,
                        "modScheme": "QPSK", "demodType": "hard"}, link=UncodedLink(seed=9))
    assert abs(ber / theoretical_ber_awgn("QPSK", 2) - 1) < 0.1


def test_qam16_hard_high_snr():
    ber, n_bits = chain_ber({"EbNo": 20, "maxErrs": 100, "maxBits": 100_000,
                             "modScheme": "16QAM", "demodType": "hard"})
    assert n_bits >= 100_000
    assert ber < 1e-4


def test_soft_and_hard_qpsk_decisions_agree():
    hard = run_ber(UncodedLink("QPSK", "hard", seed=10), 3, 10**9, 10 * CHAIN_FRAME_SIZE)
    soft = run_ber(UncodedLink("QPSK", "soft", seed=10), 3, 10**9, 10 * CHAIN_FRAME_SIZE)
    assert hard == soft


def test_coding_gain():
    res = run_ber(CodedLink(seed=11), 4, 10**9, 10 * CODED_FRAME_SIZE)
    assert res.ber < theoretical_ber_awgn("QPSK", 4) / 10


def test_negated_llr_convention():
    link = CodedLink(seed=12)
    link.configure(10)
    tx_bits = link.bit_source.generate(CODED_FRAME_SIZE)
    rx = link.channel.transmit(modulate_bits(link.encoder.encode(tx_bits), link.modulation))
    llr = demod_soft(rx, link.modulation, link.noise_var)

    right = link.decoder.decode(link.quantizer.quantize(-llr))
    wrong = link.decoder.decode(link.quantizer.quantize(llr))
    assert bit_error_rate(tx_bits, right) == 0.0
    assert bit_error_rate(tx_bits, wrong) > 0.5

# -------------------------------------------------------------------------
# Configuration
# -------------------------------------------------------------------------

@pytest.mark.parametrize("args", [
    {"EbNo": 0, "maxErrs": 10, "maxBits": 100, "modScheme": "8PSK", "demodType": "hard"},
    {"EbNo": 0, "maxErrs": 10, "maxBits": 100, "modScheme": "QPSK", "demodType": "fuzzy"},
    {"EbNo": 0, "maxErrs": 10, "modScheme": "QPSK", "demodType": "hard"},
    {"EbNo": 0, "maxErrs": -3, "maxBits": 100},
])
def test_invalid_chain_config(args):
    with pytest.raises(ConfigurationError):
        chain_ber(args)


def test_chain_config_resolves_enums():
    cfg = ChainConfig.from_mapping({"EbNo": 1, "maxErrs": 10, "maxBits": 100,
                                    "modScheme": "64qam", "demodType": "SOFT"})
    assert cfg.mod_scheme is Modulation.QAM64
    assert cfg.demod_type is DemodType.SOFT


def test_chain_link_must_match_config():
    link = UncodedLink("QPSK", "hard")
    with pytest.raises(ConfigurationError):
        chain_ber(ChainConfig(0, 10, 100, "16QAM", "hard"), link=link)


def test_quantizer_decoder_mismatch():
    with pytest.raises(ConfigurationError):
        CodedLink(boundary_points=np.arange(-3, 4))
    CodedLink(boundary_points=np.arange(-3, 4), soft_bits=3)


def test_uncoded_block_must_fill_symbols():
    with pytest.raises(ConfigurationError):
        UncodedLink("64QAM", block_size=2401)

# -------------------------------------------------------------------------
# Sweep driver and plots
# -------------------------------------------------------------------------

def test_sweep_chain_dataframe():
    df = sweep_chain([0, 6], modulations=["QPSK"], demod_types=["hard", "soft"],
                     max_errs=10**9, max_bits=2 * CHAIN_FRAME_SIZE, seed=13)
    assert len(df) == 4
    assert {"ebno_db", "ber", "bits", "errors", "stop_reason", "ber_theory"} <= set(df.columns)
    assert (df["bits"] == 2 * CHAIN_FRAME_SIZE).all()


def test_sweep_coded_reuses_link():
    link = CodedLink(seed=14)
    df = sweep_coded([1, 2], max_errs=10**9, max_bits=CODED_FRAME_SIZE, link=link)
    assert df["bits"].tolist() == [CODED_FRAME_SIZE, CODED_FRAME_SIZE]
    assert link.tally.bits == CODED_FRAME_SIZE


def test_plots(tmp_path):
    df = sweep_chain([0, 4], modulations=["QPSK"], demod_types=["hard"],
                     max_errs=10**9, max_bits=CHAIN_FRAME_SIZE, seed=15)
    out = tmp_path / "ber.png"
    fig = plot_ber_curves(df, outpath=str(out))
    assert out.exists()
    assert fig.axes[0].get_yscale() == "log"
    fig = plot_constellation("16QAM")
    assert len(fig.axes[0].texts) == 16
