#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Monte-Carlo QMRA for Campylobacter jejuni infection from freshwater swimming

Reproduces the infection-risk table for recreational freshwater contact from the
November 2002 NZ report "Pathogen Occurrence and Human Health Risk Assessment
Analysis" (McBride et al., table A3.7.3, column A). That table is the one later
laid against the national E. coli percentile distribution to derive bathing
water guideline cut-offs.

--------------------------------------------------------------------
MODEL
--------------------------------------------------------------------
For each trial, a cohort of n swimmers (default 1000) visits ONE water body:
   1) Swim duration (hours) ~ PERT(0.25, 0.5, 2) and ingestion rate (ml/hour)
      ~ PERT(10, 50, 100), drawn independently per person; volume = duration × rate.
   2) A single C. jejuni concentration (per 100 ml) is drawn for the water body:
      a geometric(p=0.42531) bin index over the breaks 0, 0.3, 1.2, 4.2, 28.8,
      110, 2000, clamped to the top bin, then uniform within the bin.
   3) Dose = volume × concentration / 100.
   4) Beta-Poisson dose-response: P = 1 - (1 + dose/N50 × (2^(1/α) - 1))^(-α)
      with α = 0.145 and N50 = 896.
   5) Each swimmer is infected with their own probability (Bernoulli).
Repeating this R times (default 10,000) and counting infections per cohort gives
the distribution whose percentiles form the published table.

--------------------------------------------------------------------
ASSUMPTIONS & SCOPE
--------------------------------------------------------------------
- Everyone in a cohort shares the same water sample. This is the source of the
  heavy right tail: bad days are bad for everybody. `--independent_sites` draws
  one concentration per swimmer instead, which collapses toward the mean.
- Geometric draws past the last bin are clamped into it rather than redrawn.
  This piles extra mass into the 110-2000 bin and is kept for parity with the
  reference table.
- Mapping E. coli levels back to risk is a lookup against a percentile table
  supplied by the caller (`IndicatorTable`); no survey data ships with the model.

Reproducibility: each trial draws from its own generator spawned from a single
`numpy.random.SeedSequence`, so results depend on `--seed` only, not on
`--workers`.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import math
import re
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

LOG = logging.getLogger(__name__)


# ----------------------------
# CONFIGURABLE CONSTANTS
# ----------------------------

DURATION_PERT: Tuple[float, float, float] = (0.25, 0.5, 2.0)     # hours (min, mode, max)
RATE_PERT: Tuple[float, float, float] = (10.0, 50.0, 100.0)       # ml per hour (min, mode, max)
PERT_SHAPE: float = 4.0                                           # classic PERT steepness

# Concentration bins (C. jejuni per 100 ml). Six bins, indices 0..5.
CONCENTRATION_BREAKS: Tuple[float, ...] = (0.0, 0.3, 1.2, 4.2, 28.8, 110.0, 2000.0)
BIN_PROB: float = 0.42531                                         # geometric success probability

# Beta-Poisson constants for C. jejuni.
DOSE_ALPHA: float = 0.145
DOSE_N50: float = 896.0

DEFAULT_PEOPLE: int = 1000
DEFAULT_TRIALS: int = 10_000

# Probability points of the published table: 0, 2.5%, ..., 100%.
DEFAULT_PROBS: Tuple[float, ...] = tuple(round(0.025 * i, 3) for i in range(41))

# Guideline risk bands (% of swimmers infected).
RISK_BANDS: Tuple[float, ...] = (0.1, 1.0, 5.0)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


# ----------------------------
# ERRORS
# ----------------------------

class QMRAError(ValueError):
    """Base class for validation failures. Raised eagerly, before any sampling."""


class InvalidParameters(QMRAError):
    """Distribution or model constants out of range."""


class InvalidBinTable(QMRAError):
    """Concentration bins with gaps, overlaps, bad indices or bad bounds."""


class InvalidDose(QMRAError):
    """Negative or NaN dose passed to the dose-response model."""


class InvalidCohortSize(QMRAError):
    pass


class InvalidTrialCount(QMRAError):
    pass


class InvalidIndicatorTable(QMRAError):
    """E. coli percentile/count/risk table that cannot be interpolated."""


# ----------------------------
# UTILS
# ----------------------------

def _finite(value, name: str, exc=InvalidParameters) -> float:
    try:
        x = float(value)
    except (TypeError, ValueError):
        raise exc(f"{name} must be numeric, got {value!r}.")
    if not math.isfinite(x):
        raise exc(f"{name} must be finite, got {x}.")
    return x


def _positive_count(value, name: str, exc) -> int:
    """Validate a strictly positive integer count (cohort size, trials, workers)."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise exc(f"{name} must be an integer, got {value!r}.")
    if value <= 0:
        raise exc(f"{name} must be > 0, got {value}.")
    return int(value)


def _check_seed(seed):
    """None or a non-negative integer, as SeedSequence accepts."""
    if seed is None or isinstance(seed, np.random.SeedSequence):
        return seed
    if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)) or seed < 0:
        raise InvalidParameters(f"seed must be None or a non-negative integer, got {seed!r}.")
    return int(seed)


def _check_bin_prob(p) -> float:
    p = _finite(p, "bin_prob")
    if not (0.0 < p <= 1.0):
        raise InvalidParameters(f"bin_prob must be in (0, 1], got {p}.")
    return p


def parse_keyvals(spec: Optional[str],
                  allowed_keys: Optional[Tuple[str, ...]] = None) -> Dict[str, float]:
    """Parse comma/semicolon-separated `key=value` pairs into a float dict.

    Example: "min=0.25,mode=0.5,max=2".
    Unknown keys are rejected if `allowed_keys` is provided.
    """
    if not spec:
        return {}
    parts = re.split(r"[;,]\s*", spec.strip())
    out: Dict[str, float] = {}
    for p in parts:
        if not p:
            continue
        if "=" not in p:
            raise ValueError(f"Expected 'key=value' pairs, got '{p}'.")
        k, v = p.split("=", 1)
        key = k.strip().lower()
        if allowed_keys and key not in allowed_keys:
            raise ValueError(f"Unknown key '{key}'. Allowed: {allowed_keys}")
        try:
            val = float(v.strip())
        except ValueError:
            raise ValueError(f"Value for '{key}' must be numeric, got '{v}'.")
        out[key] = val
    return out


def parse_pert(spec: str) -> "PertParams":
    """Parse "min=..,mode=..,max=.." into validated PERT parameters."""
    vals = parse_keyvals(spec, allowed_keys=("min", "mode", "max"))
    missing = [k for k in ("min", "mode", "max") if k not in vals]
    if missing:
        raise ValueError(f"PERT spec '{spec}' is missing: {', '.join(missing)}.")
    return PertParams(vals["min"], vals["mode"], vals["max"])


def parse_breaks(spec: str) -> Tuple[float, ...]:
    """Parse bin breakpoints like "0,0.3,1.2,4.2,28.8,110,2000"."""
    out = []
    for tok in re.split(r"[;,\s]+", (spec or "").strip()):
        if not tok:
            continue
        try:
            out.append(float(tok))
        except ValueError:
            raise ValueError(f"Bin break must be numeric, got '{tok}'.")
    return tuple(out)


def parse_indicator_pairs(spec: Optional[str]) -> List[Tuple[float, float]]:
    """Parse E. coli percentile table entries like "50:40,80:540,95:1000".

    Each item is `percentile:count` (or `percentile=count`). Order is preserved;
    the table itself checks monotonicity.
    """
    if not spec:
        return []
    out: List[Tuple[float, float]] = []
    for it in re.split(r"[;,]\s*", spec.strip()):
        if not it:
            continue
        m = re.match(r"^\s*([^:=\s]+)\s*[:=]\s*([^:=\s]+)\s*$", it)
        if not m:
            raise ValueError(f"Could not parse E. coli table item: '{it}'. Use 'percentile:count'.")
        try:
            out.append((float(m.group(1)), float(m.group(2))))
        except ValueError:
            raise ValueError(f"E. coli table item '{it}' must be numeric.")
    return out


# ----------------------------
# PERT SAMPLER
# ----------------------------

@dataclass(frozen=True)
class PertParams:
    """PERT bounds and most-likely value. Requires minimum < mode < maximum."""
    minimum: float
    mode: float
    maximum: float

    def __post_init__(self) -> None:
        lo = _finite(self.minimum, "PERT minimum")
        mode = _finite(self.mode, "PERT mode")
        hi = _finite(self.maximum, "PERT maximum")
        if not (lo < mode < hi):
            raise InvalidParameters(
                f"PERT needs minimum < mode < maximum, got ({lo}, {mode}, {hi})."
            )
        object.__setattr__(self, "minimum", lo)
        object.__setattr__(self, "mode", mode)
        object.__setattr__(self, "maximum", hi)

    def mean(self, shape: float = PERT_SHAPE) -> float:
        return (self.minimum + shape * self.mode + self.maximum) / (shape + 2.0)


def pert_beta_params(pert: PertParams, shape: float = PERT_SHAPE) -> Tuple[float, float]:
    """Beta(alpha, beta) parameters of a PERT distribution.

    alpha = 1 + shape × (mode - min) / (max - min)
    beta  = 1 + shape × (max - mode) / (max - min)
    """
    shape = _finite(shape, "PERT shape")
    if shape <= 0:
        raise InvalidParameters(f"PERT shape must be > 0, got {shape}.")
    span = pert.maximum - pert.minimum
    a = 1.0 + shape * (pert.mode - pert.minimum) / span
    b = 1.0 + shape * (pert.maximum - pert.mode) / span
    return a, b


def sample_pert(pert: PertParams, size: int, rng: np.random.Generator,
                shape: float = PERT_SHAPE) -> np.ndarray:
    """Draw `size` independent PERT samples, rescaled Beta draws on [min, max]."""
    if isinstance(size, bool) or not isinstance(size, (int, np.integer)) or size < 0:
        raise InvalidParameters(f"size must be a non-negative integer, got {size!r}.")
    a, b = pert_beta_params(pert, shape)
    return pert.minimum + (pert.maximum - pert.minimum) * rng.beta(a, b, size=int(size))


# ----------------------------
# CONCENTRATION BINS
# ----------------------------

@dataclass(frozen=True)
class ConcentrationBins:
    """Contiguous (index, lower, upper) bins partitioning [0, top).

    Indices run 0..k-1 in order, each bin is non-empty, and each lower bound
    equals the previous upper bound.
    """
    rows: Tuple[Tuple[int, float, float], ...]

    def __post_init__(self) -> None:
        try:
            rows = tuple((r[0], float(r[1]), float(r[2])) for r in self.rows)
            if any(len(r) != 3 for r in self.rows):
                raise ValueError("rows must be (index, lower, upper)")
        except (TypeError, ValueError, IndexError) as e:
            raise InvalidBinTable(f"Malformed bin table: {e}") from e
        if not rows:
            raise InvalidBinTable("Bin table must contain at least one bin.")

        prev_hi = 0.0
        for pos, (idx, lo, hi) in enumerate(rows):
            if isinstance(idx, bool) or idx != pos:
                raise InvalidBinTable(f"Bins must be indexed 0..{len(rows) - 1} in order; got {idx} at {pos}.")
            if not (math.isfinite(lo) and math.isfinite(hi)):
                raise InvalidBinTable(f"Bin {pos} has non-finite bounds ({lo}, {hi}).")
            if lo >= hi:
                raise InvalidBinTable(f"Bin {pos} must have lower < upper, got ({lo}, {hi}).")
            if lo != prev_hi:
                kind = "gap" if lo > prev_hi else "overlap"
                raise InvalidBinTable(f"Bin {pos} starts at {lo}; {kind} after previous bound {prev_hi}.")
            prev_hi = hi
        object.__setattr__(self, "rows", tuple((int(i), lo, hi) for i, lo, hi in rows))

    @classmethod
    def from_breaks(cls, breaks: Sequence[float]) -> "ConcentrationBins":
        b = list(breaks)
        if len(b) < 2:
            raise InvalidBinTable(f"Need at least two breaks, got {len(b)}.")
        return cls(rows=tuple((i, b[i], b[i + 1]) for i in range(len(b) - 1)))

    @property
    def top_index(self) -> int:
        return len(self.rows) - 1

    @property
    def lower(self) -> np.ndarray:
        return np.array([r[1] for r in self.rows], dtype=float)

    @property
    def upper(self) -> np.ndarray:
        return np.array([r[2] for r in self.rows], dtype=float)


def sample_bin_index(bins: ConcentrationBins, bin_prob: float, rng: np.random.Generator,
                     size: Optional[int] = None):
    """Geometric bin index (failures before first success), clamped to the top bin.

    numpy's geometric counts trials (support 1, 2, ...), hence the shift by one.
    Draws past the last bin are clamped, never redrawn.
    """
    p = _check_bin_prob(bin_prob)
    return np.minimum(rng.geometric(p, size=size) - 1, bins.top_index)


def sample_concentration(bins: ConcentrationBins, bin_prob: float, rng: np.random.Generator,
                         size: Optional[int] = None):
    """Concentration per 100 ml: geometric bin then uniform within [lower, upper).

    Returns a float when `size` is None (one water body), otherwise an array.
    """
    idx = sample_bin_index(bins, bin_prob, rng, size=size)
    lower = bins.lower[idx]
    upper = bins.upper[idx]
    # uniform() can round onto the upper edge for wide bins
    values = np.minimum(rng.uniform(lower, upper), np.nextafter(upper, lower))
    return float(values) if size is None else values


# ----------------------------
# DOSE-RESPONSE
# ----------------------------

def _dose_scale(alpha: float, n50: float) -> float:
    alpha = _finite(alpha, "alpha")
    n50 = _finite(n50, "N50")
    if alpha <= 0 or n50 <= 0:
        raise InvalidParameters(f"alpha and N50 must be > 0, got alpha={alpha}, N50={n50}.")
    try:
        return math.expm1(math.log(2.0) / alpha)   # 2^(1/alpha) - 1
    except OverflowError:
        raise InvalidParameters(f"alpha={alpha} is too small; 2^(1/alpha) overflows.")


def dose_response(dose, alpha: float = DOSE_ALPHA, n50: float = DOSE_N50):
    """Approximate Beta-Poisson probability of infection.

    P = 1 - (1 + dose/N50 × (2^(1/alpha) - 1))^(-alpha), computed as
    -expm1(-alpha × log1p(...)) so that tiny doses keep their precision and
    dose = 0 gives exactly 0.

    Args:
        dose: Organisms ingested, scalar or array, >= 0.
        alpha: Beta-Poisson slope parameter.
        n50: Median infectious dose.
    Returns:
        float for scalar input, otherwise an array of the same shape.
    """
    scale = _dose_scale(alpha, n50)
    try:
        d = np.asarray(dose, dtype=float)
    except (TypeError, ValueError):
        raise InvalidDose(f"dose must be numeric, got {dose!r}.")
    if np.any(np.isnan(d)) or np.any(d < 0):
        raise InvalidDose("dose must be >= 0 (and not NaN).")
    p = -np.expm1(-float(alpha) * np.log1p(d / float(n50) * scale))
    return float(p) if p.ndim == 0 else p


@dataclass(frozen=True)
class DoseResponse:
    """Dose-response constants. Re-derive both from the literature before changing either."""
    alpha: float = DOSE_ALPHA
    n50: float = DOSE_N50

    def __post_init__(self) -> None:
        _dose_scale(self.alpha, self.n50)

    def probability(self, dose):
        return dose_response(dose, self.alpha, self.n50)


# ----------------------------
# DATA CLASSES
# ----------------------------

@dataclass(frozen=True)
class ModelConfig:
    """Immutable model constants passed explicitly into every simulation call.

    Defaults reproduce the reference table. Build variants with
    `dataclasses.replace`; separate configs can run side by side.
    """
    duration: PertParams = field(default_factory=lambda: PertParams(*DURATION_PERT))
    rate: PertParams = field(default_factory=lambda: PertParams(*RATE_PERT))
    bins: ConcentrationBins = field(
        default_factory=lambda: ConcentrationBins.from_breaks(CONCENTRATION_BREAKS))
    bin_prob: float = BIN_PROB
    dose_response: DoseResponse = field(default_factory=DoseResponse)
    pert_shape: float = PERT_SHAPE

    def __post_init__(self) -> None:
        object.__setattr__(self, "bin_prob", _check_bin_prob(self.bin_prob))
        pert_beta_params(self.duration, self.pert_shape)


@dataclass
class ModelInputs:
    """Configuration for a single run of the simulator.

    Most fields map directly to CLI flags. Counts are validated on construction.
    """
    config: ModelConfig = field(default_factory=ModelConfig)
    n_people: int = DEFAULT_PEOPLE
    n_trials: int = DEFAULT_TRIALS
    seed: Optional[int] = None
    workers: int = 1
    shared_water_body: bool = True        # False = every swimmer at a different site
    concentration: Optional[float] = None  # fixed measured concentration per 100 ml

    def __post_init__(self) -> None:
        _positive_count(self.n_people, "n_people", InvalidCohortSize)
        _positive_count(self.n_trials, "n_trials", InvalidTrialCount)
        _positive_count(self.workers, "workers", InvalidParameters)
        _check_seed(self.seed)
        if self.concentration is not None:
            c = _finite(self.concentration, "concentration")
            if c < 0:
                raise InvalidParameters(f"concentration must be >= 0, got {c}.")


@dataclass
class SimulationResults:
    """Outputs from a single run of the simulator.

    `outcomes` holds the number of infected swimmers for each trial, in trial order.
    """
    outcomes: np.ndarray                  # (n_trials,)
    n_people: int
    n_trials: int
    seed_entropy: int                     # pass back as --seed to reproduce an unseeded run
    shared_water_body: bool
    concentration: Optional[float]

    def risk_percent(self) -> np.ndarray:
        return 100.0 * self.outcomes / self.n_people


# ----------------------------
# CORE SIMULATION
# ----------------------------

def simulate_cohort(n_people: int, config: ModelConfig, rng: np.random.Generator,
                    shared_water_body: bool = True,
                    concentration: Optional[float] = None) -> np.ndarray:
    """Infection outcomes (0/1) for n swimmers at one water body on one occasion.

    Algorithm:
      1) n durations and n ingestion rates from their PERTs; volume = duration × rate.
      2) ONE concentration for the whole cohort (or one per person when
         `shared_water_body` is False, or the fixed `concentration` if given).
      3) dose = volume × concentration / 100; probability via dose-response.
      4) One Bernoulli draw per person.
    """
    n = _positive_count(n_people, "n_people", InvalidCohortSize)

    duration = sample_pert(config.duration, n, rng, shape=config.pert_shape)
    rate = sample_pert(config.rate, n, rng, shape=config.pert_shape)
    volume = duration * rate                                    # ml

    if concentration is not None:
        counts = float(concentration)
    elif shared_water_body:
        counts = sample_concentration(config.bins, config.bin_prob, rng)
    else:
        counts = sample_concentration(config.bins, config.bin_prob, rng, size=n)

    dose = volume * counts / 100.0
    p_inf = config.dose_response.probability(dose)
    return rng.binomial(1, p_inf).astype(np.int8)


def _run_trial_block(config: ModelConfig, n_people: int,
                     seeds: Sequence[np.random.SeedSequence],
                     shared_water_body: bool,
                     concentration: Optional[float]) -> np.ndarray:
    """Infected counts for a contiguous block of trials, one generator per trial."""
    out = np.empty(len(seeds), dtype=np.int64)
    for i, ss in enumerate(seeds):
        rng = np.random.default_rng(ss)
        out[i] = int(simulate_cohort(n_people, config, rng, shared_water_body, concentration).sum())
    LOG.debug("Finished block of %d trials", len(seeds))
    return out


def run_trials(n_people: int, n_trials: int, config: Optional[ModelConfig] = None,
               seed: Union[int, np.random.SeedSequence, None] = None, workers: int = 1,
               shared_water_body: bool = True,
               concentration: Optional[float] = None) -> np.ndarray:
    """Infected count per trial for `n_trials` independent cohorts.

    Every trial gets its own child of `SeedSequence(seed)`, so the returned
    sequence is the same for any `workers`. With workers > 1 contiguous blocks
    of trials run in a process pool and are concatenated back in trial order.
    """
    n = _positive_count(n_people, "n_people", InvalidCohortSize)
    r = _positive_count(n_trials, "n_trials", InvalidTrialCount)
    w = _positive_count(workers, "workers", InvalidParameters)
    config = config if config is not None else ModelConfig()

    seed = _check_seed(seed)
    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    seeds = root.spawn(r)

    if w == 1 or r == 1:
        return _run_trial_block(config, n, seeds, shared_water_body, concentration)

    bounds = np.linspace(0, r, min(w, r) + 1).astype(int)
    blocks = [seeds[a:b] for a, b in zip(bounds[:-1], bounds[1:]) if b > a]
    LOG.debug("Splitting %d trials into %d blocks", r, len(blocks))
    with ProcessPoolExecutor(max_workers=len(blocks)) as pool:
        futures = [pool.submit(_run_trial_block, config, n, block, shared_water_body, concentration)
                   for block in blocks]
        return np.concatenate([f.result() for f in futures])


def run_simulation(inputs: ModelInputs) -> SimulationResults:
    """Run all trials described by `inputs` and collect the outcome sequence."""
    root = np.random.SeedSequence(inputs.seed)
    LOG.info("Simulating %d trials of %d swimmers (workers=%d, shared_water_body=%s)",
             inputs.n_trials, inputs.n_people, inputs.workers, inputs.shared_water_body)
    LOG.debug("Seed entropy: %d", root.entropy)

    outcomes = run_trials(
        inputs.n_people, inputs.n_trials, inputs.config,
        seed=root,
        workers=inputs.workers,
        shared_water_body=inputs.shared_water_body,
        concentration=inputs.concentration,
    )
    LOG.info("Done: median %.1f, max %d infected per cohort",
             float(np.median(outcomes)), int(outcomes.max()))

    return SimulationResults(
        outcomes=outcomes,
        n_people=int(inputs.n_people),
        n_trials=int(inputs.n_trials),
        seed_entropy=int(root.entropy),
        shared_water_body=bool(inputs.shared_water_body),
        concentration=None if inputs.concentration is None else float(inputs.concentration),
    )


def quantiles(outcomes, probs):
    """Empirical quantiles with linear interpolation between order statistics.

    This is the common "type 7" definition: position (R - 1) × p between the
    sorted values, so p=0 gives the minimum and p=1 the maximum.
    """
    x = np.asarray(outcomes, dtype=float)
    if x.size == 0:
        raise InvalidTrialCount("outcomes must contain at least one trial.")
    p = np.asarray(probs, dtype=float)
    if np.any(~np.isfinite(p)) or np.any((p < 0.0) | (p > 1.0)):
        raise InvalidParameters("probabilities must lie in [0, 1].")
    return np.quantile(x, p, method="linear")


def risk_distribution(outcomes, probs: Sequence[float] = DEFAULT_PROBS) -> Dict[float, float]:
    """Mapping probability point -> quantile of infected counts."""
    q = quantiles(outcomes, probs)
    return {float(p): float(v) for p, v in zip(probs, q)}


# ----------------------------
# INDICATOR MAPPING (E. coli)
# ----------------------------

def risk_at_percentiles(outcomes, n_people: int, percentiles: Sequence[float]) -> np.ndarray:
    """Infection risk (%) at each percentile (0-100) of the simulated outcomes.

    This is the side-by-side step: the risk column to pair with an E. coli
    percentile table measured at the same percentiles.
    """
    n = _positive_count(n_people, "n_people", InvalidCohortSize)
    pct = np.asarray(percentiles, dtype=float)
    return 100.0 * quantiles(outcomes, pct / 100.0) / n


@dataclass(frozen=True)
class IndicatorTable:
    """E. coli percentile/count table with a parallel risk (%) per percentile.

    Counts and percentiles must be strictly increasing. Lookups interpolate
    linearly and clamp to the end values outside the tabulated range.
    """
    percentiles: Tuple[float, ...]
    counts: Tuple[float, ...]
    risks: Tuple[float, ...]

    def __post_init__(self) -> None:
        try:
            cols = [tuple(float(v) for v in col) for col in (self.percentiles, self.counts, self.risks)]
        except (TypeError, ValueError) as e:
            raise InvalidIndicatorTable(f"Indicator table values must be numeric: {e}") from e
        pct, counts, risks = cols
        if not counts:
            raise InvalidIndicatorTable("Indicator table must have at least one row.")
        if not (len(pct) == len(counts) == len(risks)):
            raise InvalidIndicatorTable(
                f"Column lengths differ: {len(pct)} percentiles, {len(counts)} counts, {len(risks)} risks."
            )
        if not all(math.isfinite(v) for col in cols for v in col):
            raise InvalidIndicatorTable("Indicator table values must be finite.")
        if any(not (0.0 <= v <= 100.0) for v in pct):
            raise InvalidIndicatorTable("Percentiles must lie in [0, 100].")
        if any(v < 0 for v in counts):
            raise InvalidIndicatorTable("E. coli counts must be >= 0.")
        if np.any(np.diff(pct) <= 0) or np.any(np.diff(counts) <= 0):
            raise InvalidIndicatorTable("Percentiles and counts must be strictly increasing.")
        object.__setattr__(self, "percentiles", pct)
        object.__setattr__(self, "counts", counts)
        object.__setattr__(self, "risks", risks)

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[float, float]], risks: Sequence[float]) -> "IndicatorTable":
        if not pairs:
            raise InvalidIndicatorTable("Indicator table must have at least one row.")
        pct, counts = zip(*pairs)
        return cls(percentiles=tuple(pct), counts=tuple(counts), risks=tuple(risks))

    @classmethod
    def check_pairs(cls, pairs: Sequence[Tuple[float, float]]) -> List[Tuple[float, float]]:
        """Validate the percentile and count columns before any risks exist."""
        cls.from_pairs(pairs, [0.0] * len(pairs))
        return list(pairs)

    @classmethod
    def from_simulation(cls, pairs: Sequence[Tuple[float, float]],
                        results: SimulationResults) -> "IndicatorTable":
        """Pair an E. coli (percentile, count) table with simulated risk at those percentiles."""
        if not pairs:
            raise InvalidIndicatorTable("Indicator table must have at least one row.")
        pct = [p for p, _ in pairs]
        risks = risk_at_percentiles(results.outcomes, results.n_people, np.clip(pct, 0.0, 100.0))
        return cls.from_pairs(pairs, tuple(float(r) for r in risks))

    def risk_for_count(self, count: float) -> float:
        """Risk (%) for an E. coli count per 100 ml."""
        c = _finite(count, "E. coli count")
        return float(np.interp(c, self.counts, self.risks))

    def count_for_risk(self, risk: float) -> float:
        """E. coli count at which the tabulated risk reaches `risk` (%)."""
        r = _finite(risk, "risk")
        if np.any(np.diff(self.risks) <= 0):
            raise InvalidIndicatorTable("Inverse lookup needs strictly increasing risks.")
        return float(np.interp(r, self.risks, self.counts))


# ----------------------------
# REPORTING
# ----------------------------

def summarize(results: SimulationResults, probs: Sequence[float] = DEFAULT_PROBS) -> Dict:
    """Summarize the outcome distribution and its percentile table.

    Returns a JSON-serializable dict suitable for `--report_json`.
    """
    x = results.outcomes
    n = results.n_people
    q = quantiles(x, probs)
    median = float(np.median(x))

    return {
        "overall": {
            "n_people": n,
            "n_trials": results.n_trials,
            "mean_infected": float(np.mean(x)),
            "std_infected": float(np.std(x)),
            "median_infected": median,
            "median_risk_pct": 100.0 * median / n,
            "max_infected": int(np.max(x)),
            "p_any_infected": float(np.mean(x > 0)),
        },
        "percentiles": [
            {"p": float(p), "infected": float(v), "risk_pct": 100.0 * float(v) / n}
            for p, v in zip(probs, q)
        ],
        "settings": {
            "shared_water_body": results.shared_water_body,
            "concentration": results.concentration,
            "seed_entropy": results.seed_entropy,
        },
    }


def interpret(median_risk_pct: float) -> str:
    """Short qualitative reading of the median risk against the guideline bands."""
    lo, mid, hi = RISK_BANDS
    if median_risk_pct < lo:
        return f"Very low risk: typical infection risk below {lo}% of swimmers."
    if median_risk_pct < mid:
        return f"Low risk: typical infection risk between {lo}% and {mid}%."
    if median_risk_pct < hi:
        return f"Moderate risk: typical infection risk between {mid}% and {hi}%."
    return f"High risk: typical infection risk of {hi}% or more of swimmers."


def print_percentile_table(summary: Dict) -> None:
    """Print infected counts per percentile, rounded as in the published table."""
    n = summary["overall"]["n_people"]
    print(f"\nInfections per {n} swimmers by percentile:")
    for row in summary["percentiles"]:
        print(f"  {row['p'] * 100:6.1f}%  {int(round(row['infected'])):6d}")


# ----------------------------
# SENSITIVITY ANALYSIS (optional)
# ----------------------------

def quick_sensitivity(inputs: ModelInputs) -> List[Tuple[str, Dict]]:
    """
    Small "what-if" analysis around the reference configuration.
    The seed is held fixed (if provided) so results are comparable.
    Returns list of (label, summary_dict).
    """
    cfg = inputs.config
    scenarios: List[Tuple[str, ModelInputs]] = []

    flipped = "independent sites" if inputs.shared_water_body else "shared site"
    scenarios.append((flipped, replace(inputs, shared_water_body=not inputs.shared_water_body)))
    for delta in (-0.05, 0.05):
        p = cfg.bin_prob + delta
        if 0.0 < p <= 1.0:
            scenarios.append((f"bin_prob {p:.3f}", replace(inputs, config=replace(cfg, bin_prob=p))))
    longer = PertParams(2 * cfg.duration.minimum, 2 * cfg.duration.mode, 2 * cfg.duration.maximum)
    scenarios.append(("duration x2", replace(inputs, config=replace(cfg, duration=longer))))

    out: List[Tuple[str, Dict]] = []
    for label, inp in scenarios:
        LOG.debug("Sensitivity scenario: %s", label)
        out.append((label, summarize(run_simulation(inp))))
    return out


# ----------------------------
# CLI
# ----------------------------

def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description=(
            "Estimate Campylobacter infection risk for freshwater swimmers with a Monte Carlo "
            "QMRA: PERT exposure, binned water concentration shared per site, Beta-Poisson "
            "dose-response, and percentiles of infections per cohort."
        )
    )
    # Exposure
    p.add_argument(
        "--duration", type=str, default="min=0.25,mode=0.5,max=2",
        help='Swim duration PERT in hours, e.g. "min=0.25,mode=0.5,max=2".'
    )
    p.add_argument(
        "--rate", type=str, default="min=10,mode=50,max=100",
        help='Ingestion rate PERT in ml/hour, e.g. "min=10,mode=50,max=100".'
    )
    # Water
    p.add_argument(
        "--breaks", type=str, default=",".join(f"{b:g}" for b in CONCENTRATION_BREAKS),
        help="Concentration bin breakpoints per 100 ml, starting at 0."
    )
    p.add_argument("--bin_prob", type=float, default=BIN_PROB,
                   help="Geometric success probability for choosing a concentration bin.")
    p.add_argument(
        "--concentration", type=float, default=None,
        help="Use this measured concentration (per 100 ml) instead of sampling one."
    )
    p.add_argument(
        "--independent_sites", action="store_true",
        help="Each swimmer visits a different site (one concentration draw per person)."
    )
    # Dose-response
    p.add_argument("--alpha", type=float, default=DOSE_ALPHA, help="Beta-Poisson alpha.")
    p.add_argument("--n50", type=float, default=DOSE_N50, help="Beta-Poisson median infectious dose.")
    # Monte Carlo & random
    p.add_argument("--people", type=int, default=DEFAULT_PEOPLE, help="Swimmers per cohort.")
    p.add_argument("--trials", type=int, default=DEFAULT_TRIALS, help="Number of Monte Carlo trials.")
    p.add_argument("--seed", type=int, default=None, help="Random seed for reproducibility.")
    p.add_argument("--workers", type=int, default=1, help="Worker processes for the trials.")
    # Indicator mapping
    p.add_argument(
        "--ecoli_table", type=str, default=None,
        help='E. coli percentile table "percentile:count,..." to pair with simulated risk.'
    )
    p.add_argument("--ecoli_count", type=float, default=None,
                   help="E. coli count per 100 ml to look up in --ecoli_table.")
    # Output
    p.add_argument("--report_json", type=str, default=None, help="Path to save summary JSON.")
    p.add_argument("--outcomes_csv", type=str, default=None,
                   help="Path to save infected count per trial (CSV: trial,infected).")
    p.add_argument("--sensitivity", action="store_true", help="Run a small what-if sensitivity analysis.")
    p.add_argument("--log_level", type=str.upper, default="WARNING",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                   help="Logging level (DEBUG, INFO, WARNING, ERROR).")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format=LOG_FORMAT,
    )

    if args.ecoli_count is not None and not args.ecoli_table:
        parser.error("--ecoli_count needs --ecoli_table.")

    try:
        config = ModelConfig(
            duration=parse_pert(args.duration),
            rate=parse_pert(args.rate),
            bins=ConcentrationBins.from_breaks(parse_breaks(args.breaks)),
            bin_prob=float(args.bin_prob),
            dose_response=DoseResponse(alpha=float(args.alpha), n50=float(args.n50)),
        )
        inputs = ModelInputs(
            config=config,
            n_people=int(args.people),
            n_trials=int(args.trials),
            seed=args.seed,
            workers=int(args.workers),
            shared_water_body=not args.independent_sites,
            concentration=args.concentration,
        )
        pairs = parse_indicator_pairs(args.ecoli_table)
        if pairs:
            IndicatorTable.check_pairs(pairs)
    except ValueError as e:
        parser.error(str(e))

    # Run simulation
    results = run_simulation(inputs)
    summary = summarize(results)

    # Human-readable summary
    overall = summary["overall"]
    site = "one shared site per trial" if results.shared_water_body else "independent sites"
    print(f"Simulated {overall['n_trials']} trials of {overall['n_people']} swimmers ({site}).")
    print(f"Median infected: {overall['median_infected']:.1f} ({overall['median_risk_pct']:.2f}%)")
    print(f"Mean infected: {overall['mean_infected']:.2f} (sd {overall['std_infected']:.2f})")
    print(f"Trials with at least one infection: {overall['p_any_infected']:.1%}")
    print(interpret(overall["median_risk_pct"]))
    print_percentile_table(summary)

    # Optional indicator mapping
    if pairs:
        try:
            table = IndicatorTable.from_simulation(pairs, results)
        except ValueError as e:
            parser.error(str(e))
        print("\nE. coli percentile table with simulated risk:")
        for pct, count, risk in zip(table.percentiles, table.counts, table.risks):
            print(f"  {pct:6.1f}%  E. coli {count:8.1f}/100ml  risk {risk:6.2f}%")
        summary["indicator"] = {
            "percentiles": list(table.percentiles),
            "counts": list(table.counts),
            "risks": list(table.risks),
        }
        if args.ecoli_count is not None:
            risk = table.risk_for_count(args.ecoli_count)
            print(f"Risk at E. coli {args.ecoli_count:g}/100ml: {risk:.2f}%")
            summary["indicator"]["query"] = {"count": float(args.ecoli_count), "risk_pct": risk}

    # Optional JSON
    if args.report_json:
        with open(args.report_json, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)
        print(f"Saved JSON report to: {args.report_json}")

    # Optional CSV (per-trial outcomes)
    if args.outcomes_csv:
        with open(args.outcomes_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(["trial", "infected"])
            for i, k in enumerate(results.outcomes):
                writer.writerow([i, int(k)])
        print(f"Saved per-trial outcomes to: {args.outcomes_csv}")

    # Optional sensitivity
    if args.sensitivity:
        print("\n--- Quick sensitivity analysis ---")
        for label, summ in quick_sensitivity(inputs):
            o = summ["overall"]
            print(f"{label:>18s}: median = {o['median_infected']:.1f}, mean = {o['mean_infected']:.2f}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
