import multiprocessing

import pandas as pd
import pytest

from faba import parallel
from faba.compare import search_case_control
from faba.parallel import imap_jobs, resolve_workers
from faba.sifter import BamSifter


@pytest.fixture
def four_cores(monkeypatch):
    """Pretend to run on four cores and record every pool that gets created."""
    pools = []
    real_pool = multiprocessing.Pool

    def recording_pool(*args, **kwargs):
        pools.append(kwargs.get("processes"))
        return real_pool(*args, **kwargs)

    monkeypatch.setattr(parallel.mp, "cpu_count", lambda: 4)
    monkeypatch.setattr(parallel.mp, "Pool", recording_pool)
    return pools


def test_resolve_workers():
    assert resolve_workers(1) == 1
    assert resolve_workers(0) >= 1
    assert resolve_workers(None) >= 1
    assert resolve_workers(10_000) >= 1


def test_resolve_workers_clamps_to_cores(four_cores):
    assert resolve_workers(0) == 3
    assert resolve_workers(2) == 2
    assert resolve_workers(16) == 4


def test_imap_jobs_in_process_keeps_order():
    assert list(imap_jobs(abs, [-3, 1, -2], num_workers=1)) == [3, 1, 2]


def test_imap_jobs_pool(four_cores):
    out = list(imap_jobs(abs, [-3, 1, -2, 5], num_workers=2, desc="abs"))
    assert sorted(out) == [1, 2, 3, 5]
    assert four_cores == [2]


def test_imap_jobs_empty():
    assert list(imap_jobs(abs, [], num_workers=4)) == []


def test_sweep_in_pool_matches_in_process(fg_bam, four_cores):
    serial = BamSifter.from_file(fg_bam, block_size=100)
    serial.sweep_variable_positions(workers=1)
    assert four_cores == []

    pooled = BamSifter.from_file(fg_bam, block_size=100)
    pooled.sweep_variable_positions(workers=2)
    assert four_cores == [2]

    assert pooled.get_forward_variable_positions() == serial.get_forward_variable_positions()
    assert pooled.get_reverse_variable_positions() == serial.get_reverse_variable_positions()


def test_search_case_control_in_pool_matches_in_process(fg_bam, bg_bam, four_cores):
    serial = search_case_control(fg_bam, bg_bam, threads=1, block_size=100)
    pooled = search_case_control(fg_bam, bg_bam, threads=2, block_size=100)

    # both sweeps run in a pool; single-block statistics stay in-process
    assert len(four_cores) >= 2
    assert len(pooled) == 2
    pd.testing.assert_frame_equal(pooled, serial)
