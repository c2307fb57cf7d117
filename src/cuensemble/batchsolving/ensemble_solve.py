"""Ensemble front end: batching, launch and host-side solutions."""

from time import perf_counter
from typing import Any, List, Optional

import attrs
import numpy as np

from cuensemble.algorithms.algorithm_tags import get_algorithm
from cuensemble.batchsolving.time_grid import plan_length
from cuensemble.batchsolving.vectorized_solve import (
    LAUNCH_KWARGS,
    check_adaptive_request,
    retcode_name,
    solve_batch,
    warn_failures,
)
from cuensemble.cuda_simsafe import current_mem_info
from cuensemble.kernels.base_kernel import RETCODE_NAMES, SUCCESS
from cuensemble.problems.ensemble import EnsembleProblem, ProblemBatch
from cuensemble.problems.problems import SDEProblem

#: Fraction of free device memory a single batch may occupy.
DEFAULT_MEM_PROPORTION = 0.5

#: Solver keywords forwarded to :func:`solve_batch`.
SOLVE_KWARGS = (
    "dt",
    "saveat",
    "save_everystep",
    "abstol",
    "reltol",
    "callback",
    "tstops",
    "debug",
) + LAUNCH_KWARGS


@attrs.define
class TrajectorySolution:
    """Saved times and states of one trajectory.

    Attributes
    ----------
    t
        ``(n_saves,)`` save times.
    u
        ``(n_saves, n_states)`` saved states.
    retcode
        Name of the trajectory's return code, e.g. ``"Success"``.
    prob
        The problem that produced it.
    """

    t: np.ndarray = attrs.field(eq=False)
    u: np.ndarray = attrs.field(eq=False)
    retcode: str = attrs.field()
    prob: Any = attrs.field(default=None, eq=False)

    @property
    def success(self) -> bool:
        return self.retcode == RETCODE_NAMES[SUCCESS]


@attrs.define
class EnsembleSolution:
    """Results of an ensemble solve.

    Attributes
    ----------
    t
        ``(n_saves, n_trajectories)`` save times.
    u
        ``(n_saves, n_trajectories, n_states)`` saved states.
    retcodes
        ``(n_trajectories,)`` integer return codes.
    trajectories
        One entry per trajectory: a :class:`TrajectorySolution`, or whatever
        the ensemble's ``output_func`` returned for it.
    elapsed_time
        Wall-clock seconds spent batching, solving and copying back.
    """

    t: np.ndarray = attrs.field(eq=False)
    u: np.ndarray = attrs.field(eq=False)
    retcodes: np.ndarray = attrs.field(eq=False)
    trajectories: List[Any] = attrs.field(eq=False)
    elapsed_time: float = attrs.field(default=0.0)

    def __len__(self) -> int:
        return len(self.trajectories)

    def __getitem__(self, index):
        return self.trajectories[index]

    def __iter__(self):
        return iter(self.trajectories)

    @property
    def converged(self) -> bool:
        """Return ``True`` when every trajectory finished successfully."""
        return bool(np.all(self.retcodes == SUCCESS))

    @property
    def retcode_names(self) -> List[str]:
        return [RETCODE_NAMES[int(code)] for code in self.retcodes]


def _bytes_per_trajectory(prob, n_saves: int) -> int:
    itemsize = np.dtype(prob.precision).itemsize
    n_states = prob.n_states
    per_run = n_saves * (n_states + 1) * itemsize
    per_run += (n_states + max(prob.n_params, 1)) * itemsize
    per_run += np.dtype(np.int32).itemsize
    if isinstance(prob, SDEProblem):
        # two uint64 words of xoroshiro128p state
        per_run += 16
    return per_run


def default_batch_size(
    prob,
    trajectories: int,
    n_saves: int,
    mem_proportion: float = DEFAULT_MEM_PROPORTION,
) -> int:
    """Return how many trajectories fit in a share of free device memory."""
    free, _total = current_mem_info()
    per_run = _bytes_per_trajectory(prob, n_saves)
    fit = int(free * mem_proportion) // per_run
    return max(1, min(trajectories, fit))


def solve_ensemble(
    eprob: EnsembleProblem,
    alg,
    trajectories: int,
    *,
    adaptive: Optional[bool] = None,
    batch_size: Optional[int] = None,
    **solve_kwargs,
) -> EnsembleSolution:
    """Solve ``trajectories`` members of an ensemble on the device.

    Parameters
    ----------
    eprob
        The ensemble to solve.
    alg
        Algorithm tag or name.
    trajectories
        Number of trajectories.
    adaptive
        Use adaptive stepping. Defaults to adaptive when the algorithm has
        an error estimate and the problem is an ODE.
    batch_size
        Trajectories per kernel launch. Defaults to as many as fit in half
        of the free device memory.
    **solve_kwargs
        ``dt``, ``saveat``, ``save_everystep``, ``abstol``, ``reltol``,
        ``callback``, ``tstops``, ``debug`` and the launch options of
        :func:`~cuensemble.batchsolving.vectorized_solve`. Fixed stepping
        requires ``dt``.

    Returns
    -------
    EnsembleSolution
        Host-side results. A warning is emitted when any trajectory fails.
    """
    if not isinstance(eprob, EnsembleProblem):
        raise TypeError(
            f"Expected an EnsembleProblem, got {type(eprob).__name__}."
        )
    trajectories = int(trajectories)
    if trajectories < 1:
        raise ValueError(
            f"trajectories must be at least 1, got {trajectories}."
        )
    unknown = sorted(set(solve_kwargs) - set(SOLVE_KWARGS))
    if unknown:
        raise KeyError(
            f"Unrecognized solver arguments: {', '.join(unknown)}."
        )

    alg = get_algorithm(alg)
    prob = eprob.prob
    is_sde = isinstance(prob, SDEProblem)
    if adaptive is None:
        adaptive = bool(alg.is_adaptive) and not is_sde

    settings = dict(solve_kwargs)
    settings.setdefault("save_everystep", not adaptive)
    if adaptive:
        settings.setdefault("dt", 0.1)
        check_adaptive_request(
            prob, settings.get("saveat"), settings["save_everystep"]
        )
    elif "dt" not in settings:
        raise ValueError("Fixed-step solves need a step size dt.")

    start_time = perf_counter()
    n_saves = plan_length(
        prob.tspan,
        settings["dt"],
        saveat=settings.get("saveat"),
        save_everystep=settings["save_everystep"],
        tstops=settings.get("tstops"),
        adaptive=adaptive,
        precision=prob.precision,
    )
    if batch_size is None:
        batch_size = default_batch_size(prob, trajectories, n_saves)
    batch_size = max(1, min(int(batch_size), trajectories))

    ts_chunks = []
    us_chunks = []
    retcode_chunks = []
    problems = []
    stream = settings.get("stream", 0)
    seed = None
    if is_sde and prob.seed is None:
        # one seed for every chunk, so batching never changes the paths
        seed = int(np.random.randint(0, 2**31 - 1))
    for start in range(0, trajectories, batch_size):
        stop = min(start + batch_size, trajectories)
        batch = ProblemBatch.from_problems(
            eprob.problems(start, stop),
            stream=stream,
            subsequence_start=start,
            seed=seed,
        )
        result = solve_batch(batch, None, alg, adaptive=adaptive, **settings)
        ts_chunks.append(result.ts.copy_to_host())
        us_chunks.append(result.us.copy_to_host())
        retcode_chunks.append(result.retcodes.copy_to_host())
        problems.extend(batch.problems)

    t = np.concatenate(ts_chunks, axis=1)
    u = np.concatenate(us_chunks, axis=1)
    retcodes = np.concatenate(retcode_chunks)

    solutions = []
    for i in range(trajectories):
        sol = TrajectorySolution(
            t=t[:, i],
            u=u[:, i, :],
            retcode=retcode_name(retcodes[i]),
            prob=problems[i],
        )
        value, rerun = eprob.output_func(sol, i)
        if rerun:
            raise NotImplementedError(
                "Rerunning trajectories from output_func is not supported "
                "for GPU ensembles."
            )
        solutions.append(value)

    warn_failures(retcodes)

    return EnsembleSolution(
        t=t,
        u=u,
        retcodes=retcodes,
        trajectories=solutions,
        elapsed_time=perf_counter() - start_time,
    )
