from itertools import product
from typing import Iterable, Optional
import pandas as pd

from metrics import theoretical_ber_awgn
from pipeline import CodedLink, UncodedLink, run_ber
from utils import DemodType, Modulation


# 1) Define parameter lists
modulations   = ['QPSK', '16QAM', '64QAM']
demod_types   = ['hard', 'soft']
ebno_db_list  = list(range(0, 9))
coded_ebno_db = [0, 0.5, 1, 1.5, 2, 2.5, 3]
max_errs      = 100
max_bits      = 1_000_000


def sweep_coded(
    ebno_list: Iterable[float],
    max_errs: int = max_errs,
    max_bits: int = max_bits,
    seed: Optional[int] = None,
    link: Optional[CodedLink] = None,
) -> pd.DataFrame:
    """
    Run the coded link over `ebno_list`. One link object serves every
    point, so the noise stream is not restarted between points.
    """
    if link is None:
        link = CodedLink(seed)
    rows = []
    for ebno_db in ebno_list:
        res = run_ber(link, ebno_db, max_errs, max_bits)
        rows.append({
            'config'     : 'coded',
            'modulation' : link.modulation.value,
            'demod'      : 'soft',
            'ebno_db'    : ebno_db,
            'ber'        : res.ber,
            'bits'       : res.bits,
            'errors'     : res.errors,
            'stop_reason': res.stop_reason,
            'ber_theory' : theoretical_ber_awgn(link.modulation, ebno_db),
        })
    return pd.DataFrame(rows)


def sweep_chain(
    ebno_list: Iterable[float],
    modulations: Iterable[str] = modulations,
    demod_types: Iterable[str] = demod_types,
    max_errs: int = max_errs,
    max_bits: int = max_bits,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Run the uncoded link for every modulation / demodulation pair.
    """
    ebno_list = list(ebno_list)
    rows = []
    for mod, demod_type in product(modulations, demod_types):
        mod, demod_type = Modulation.parse(mod), DemodType.parse(demod_type)
        link = UncodedLink(mod, demod_type, seed=seed)
        for ebno_db in ebno_list:
            res = run_ber(link, ebno_db, max_errs, max_bits)
            rows.append({
                'config'     : 'uncoded',
                'modulation' : mod.value,
                'demod'      : demod_type.value,
                'ebno_db'    : ebno_db,
                'ber'        : res.ber,
                'bits'       : res.bits,
                'errors'     : res.errors,
                'stop_reason': res.stop_reason,
                'ber_theory' : theoretical_ber_awgn(mod, ebno_db),
            })
    return pd.DataFrame(rows)


if __name__ == "__main__":
    import logging
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    df = pd.concat([
        sweep_coded(coded_ebno_db, seed=1234),
        sweep_chain(ebno_db_list, seed=1234),
    ], ignore_index=True)
    df.to_csv("ber_results.csv", index=False)
    print(df.to_string(index=False))
    print("Sweep complete — results in 'ber_results.csv'")

    from plots import plot_ber_curves
    plot_ber_curves(df, outpath="ber_curves.png")
