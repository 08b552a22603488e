import os
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from typing import Optional
from utils import get_normalized_constellation, get_constellation_bits, Modulation


def plot_ber_curves(
    df: pd.DataFrame,
    outpath: Optional[str] = None,
    show_theory: bool = True,
):
    """
    Simulated BER (markers) against the uncoded AWGN reference (dashed),
    one curve per (config, modulation, demod) group.
    """
    fig, ax = plt.subplots(figsize=(7, 5))
    groups = df.groupby(['config', 'modulation', 'demod'], sort=False)
    for (config, mod, demod_type), g in groups:
        g = g.sort_values('ebno_db')
        # zero-error points cannot be drawn on a log axis
        sim = g[g['ber'] > 0]
        line, = ax.semilogy(sim['ebno_db'], sim['ber'], 'o-', ms=4,
                            label=f"{config} {mod} {demod_type}")
        if show_theory:
            ax.semilogy(g['ebno_db'], g['ber_theory'], '--',
                        color=line.get_color(), lw=0.8)

    ax.set_xlabel("Eb/N0 [dB]")
    ax.set_ylabel("BER")
    ax.grid(True, which='both', alpha=0.3)
    ax.legend(fontsize=8)
    fig.tight_layout()

    if outpath is not None:
        out_dir = os.path.dirname(outpath)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        fig.savefig(outpath, dpi=100)
        print(f"Saved BER plot to {outpath}")
    return fig


def plot_constellation(mod: str, rx: Optional[np.ndarray] = None, outpath: Optional[str] = None):
    """
    Constellation with its Gray bit labels, optionally overlaid on received samples.
    """
    mod = Modulation.parse(mod)
    lut = get_normalized_constellation(mod)
    labels = get_constellation_bits(mod)

    fig, ax = plt.subplots(figsize=(5, 5))
    if rx is not None:
        ax.scatter(rx.real, rx.imag, s=2, alpha=0.3, color='gray')
    ax.scatter(lut.real, lut.imag, s=20, color='red')
    for point, bits in zip(lut, labels):
        ax.annotate(''.join(str(b) for b in bits), (point.real, point.imag),
                    textcoords="offset points", xytext=(0, 5), ha='center', fontsize=7)
    ax.set_title(f"{mod.value} constellation")
    ax.set_xlabel("In‐phase"); ax.set_ylabel("Quadrature")
    ax.axhline(0, color='gray', lw=0.5); ax.axvline(0, color='gray', lw=0.5)
    ax.set_aspect('equal', 'box')
    fig.tight_layout()

    if outpath is not None:
        fig.savefig(outpath, dpi=100)
    return fig
